import logging
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from watchparty.services.media import MediaKind
from watchparty.sync.players import PlayerAdapter, create_adapter

logger = logging.getLogger(__name__)


class PlayerSession:
    """
    Per-client, unpersisted player state: the live adapter, its media
    kind, and the ``updated_at`` of the last authoritative state applied.
    """

    def __init__(self, element_factory: Optional[Callable[[], Any]] = None,
                 adapter_options: Optional[Dict[str, Any]] = None):
        self.element_factory = element_factory
        self.adapter_options = adapter_options or {}
        self.adapter: Optional[PlayerAdapter] = None
        self.source_url: Optional[str] = None
        self.last_applied_updated_at: Optional[datetime] = None

    @property
    def media_kind(self) -> Optional[MediaKind]:
        return self.adapter.kind if self.adapter else None

    def load(self, url: str, poll_time: bool = False,
             on_ready: Optional[Callable] = None, on_error: Optional[Callable] = None) -> PlayerAdapter:
        """
        Replaces the adapter with a fresh one for ``url`` and starts
        loading it. The previous adapter is always torn down first.
        """
        self.teardown()
        element = self.element_factory() if self.element_factory else None
        adapter = create_adapter(url, element=element, poll_time=poll_time, **self.adapter_options)
        if on_ready:
            adapter.subscribe("ready", on_ready)
        if on_error:
            adapter.subscribe("error", on_error)

        self.adapter = adapter
        self.source_url = url
        logger.info(f"Loading {adapter.kind.value} source {url}")
        adapter.start_loading(url)
        return adapter

    def teardown(self):
        if self.adapter is not None:
            self.adapter.destroy()
        self.adapter = None
        self.source_url = None

    def close(self):
        self.teardown()
        self.last_applied_updated_at = None
