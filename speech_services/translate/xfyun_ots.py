"""xfyun machine translation (ots)."""

from __future__ import annotations

import base64
import enum
import logging
from typing import TYPE_CHECKING

from speech_services.xfyun.service import XFYunAPIError

if TYPE_CHECKING:
    import aiohttp

    from speech_services.xfyun.service import XFYunService

logger = logging.getLogger(__name__)


class Language(enum.StrEnum):
    EN = "en"
    ZH = "zh"


async def translate(
    service: XFYunService,
    session: aiohttp.ClientSession,
    text: str,
    source: Language | str = Language.ZH,
    target: Language | str = Language.EN,
) -> str:
    """Translate ``text``; raises XFYunAPIError on a non-zero reply code."""
    result = await service.post(
        session,
        {
            "business": {"from": str(source), "to": str(target)},
            "data": {"text": base64.b64encode(text.encode("utf-8")).decode("ascii")},
        },
    )
    try:
        dst: str = result["data"]["result"]["trans_result"]["dst"]
    except (KeyError, TypeError) as exc:
        raise XFYunAPIError(-1, f"unexpected translation reply: {result}") from exc
    logger.debug("xfyun ots %s->%s: %d chars", source, target, len(text))
    return dst
