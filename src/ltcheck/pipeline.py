from __future__ import annotations

import logging
import threading
from collections.abc import Iterable, Sequence
from typing import Optional

from .annotations import DataAnnotation, MarkupSpan, TextView, annotations_to_document
from .config import AppConfig
from .dispatcher import PARALLEL, CheckFragment, ProgressCallback, dispatch
from .fragmenter import split
from .models import UnifiedResult
from .offset_map import OffsetMap
from .reassembler import merge
from .transport import CheckClient, CheckOptions, build_client

_logger = logging.getLogger(__name__)


def check(
    text: str,
    limit: int,
    concurrency: str = PARALLEL,
    *,
    client: Optional[CheckClient] = None,
    check_fragment: Optional[CheckFragment] = None,
    options: Optional[CheckOptions] = None,
    markup: Optional[Sequence[MarkupSpan]] = None,
    max_workers: int = 4,
    timeout_s: Optional[float] = None,
    overlap: int = 0,
    strict_split: bool = False,
    split_pattern: Optional[str] = None,
    cancel_event: Optional[threading.Event] = None,
    progress_callback: Optional[ProgressCallback] = None,
    show_progress: bool = False,
) -> UnifiedResult:
    """Check ``text`` of any length, splitting it into requests of at most ``limit`` characters.

    Either returns the complete result for the whole document or raises an
    ``EngineError``; matches of a partially checked document are never returned.

    ``markup`` spans are removed (or replaced by their ``interpret_as`` text)
    before the text is sent; reported offsets still point into ``text``.
    ``split_pattern`` adds literal cut points ranked with paragraph breaks.
    """
    if limit <= 0:
        raise ValueError(f"limit must be positive, got {limit}")
    if check_fragment is None:
        if client is None:
            raise ValueError("Either client or check_fragment is required")
        check_fragment = client.check_fragment

    view = TextView(text, markup) if markup else None
    sent_text = view.plain if view is not None else text
    parts = split(
        sent_text,
        limit,
        protected=(view.protected if view is not None else ()),
        overlap=overlap,
        strict=strict_split,
        split_pattern=split_pattern,
    )
    offset_map = OffsetMap(parts.entries, view)
    _logger.info(
        "Checking %d chars in %d fragment(s) (limit=%d%s)",
        len(sent_text),
        len(parts.fragments),
        limit,
        f", {len(parts.degraded)} degraded split(s)" if parts.degraded else "",
    )

    responses = dispatch(
        parts.fragments,
        check_fragment,
        options=options,
        concurrency=concurrency,
        max_workers=max_workers,
        timeout_s=timeout_s,
        cancel_event=cancel_event,
        progress_callback=progress_callback,
        show_progress=show_progress,
    )
    result = merge(responses, offset_map, text=text)
    result.degraded = list(parts.degraded)
    _logger.info("Check finished: %d match(es)", len(result.matches))
    return result


def check_data(
    annotations: Iterable[DataAnnotation],
    limit: int,
    concurrency: str = PARALLEL,
    **kwargs,
) -> UnifiedResult:
    """Check an annotated document (text and markup pieces); offsets refer to the concatenated document."""
    text, spans = annotations_to_document(annotations)
    return check(text, limit, concurrency, markup=spans, **kwargs)


def client_from_config(cfg: AppConfig) -> CheckClient:
    return build_client(
        cfg.server.provider,
        hostname=cfg.server.hostname,
        port=cfg.server.port,
        timeout_s=cfg.server.timeout_s,
        retries=cfg.server.retries,
        retry_backoff_s=cfg.server.retry_backoff_s,
        max_suggestions=cfg.server.max_suggestions,
        username=cfg.server.username,
        api_key=cfg.server.api_key,
    )


def check_with_config(
    text: str,
    cfg: AppConfig,
    *,
    client: Optional[CheckClient] = None,
    markup: Optional[Sequence[MarkupSpan]] = None,
    cancel_event: Optional[threading.Event] = None,
    show_progress: bool = False,
) -> UnifiedResult:
    if client is None:
        client = client_from_config(cfg)
    return check(
        text,
        cfg.check.max_length,
        cfg.check.concurrency,
        client=client,
        options=cfg.check.to_options(cfg.server),
        markup=markup,
        max_workers=cfg.check.max_workers,
        timeout_s=(cfg.check.timeout_s or None),
        overlap=cfg.check.overlap,
        strict_split=cfg.check.strict_split,
        split_pattern=cfg.check.split_pattern,
        cancel_event=cancel_event,
        show_progress=show_progress,
    )
