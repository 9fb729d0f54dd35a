"""Greeting shortcut data.

Messages matching one of these patterns are answered with a canned reply and
never reach retrieval or the chat model.
"""

from __future__ import annotations

import random
import re
from typing import Sequence

GREETING_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"^(xin chào|chào|hello|hi|hey|chào bạn|chào anh|chào chị|chào em)$",
        r"^(good morning|good afternoon|good evening)$",
        r"^(chào buổi sáng|chào buổi chiều|chào buổi tối)$",
        r"^(hế lô|hê lô|alo)$",
    )
)

GREETING_REPLIES: tuple[str, ...] = (
    "Xin chào! 👋 Chào mừng bạn đến với cửa hàng thời trang của chúng tôi! Tôi rất vui được hỗ trợ bạn tìm những sản phẩm phù hợp. Bạn đang tìm kiếm gì hôm nay?",
    "Chào bạn! 😊 Cảm ơn bạn đã ghé thăm cửa hàng! Tôi là nhân viên tư vấn và sẵn sàng giúp bạn tìm những bộ trang phục đẹp nhất. Bạn có nhu cầu gì đặc biệt không?",
    "Hello! 🌟 Chào mừng bạn! Tôi rất hân hạnh được phục vụ bạn tại cửa hàng thời trang. Hãy cho tôi biết bạn đang tìm kiếm loại trang phục nào nhé!",
    "Xin chào! 💕 Chào mừng bạn đến với không gian thời trang của chúng tôi! Tôi sẽ giúp bạn tìm được những sản phẩm phù hợp với phong cách và ngân sách. Bạn có gì cần tư vấn không?",
)

_TRAILING_PUNCTUATION = " \t\n!.?~"


def is_greeting(message: str, patterns: Sequence[re.Pattern[str]] = GREETING_PATTERNS) -> bool:
    cleaned = (message or "").strip().strip(_TRAILING_PUNCTUATION).lower()
    if not cleaned:
        return False
    return any(pattern.match(cleaned) for pattern in patterns)


def pick_greeting_reply(
    replies: Sequence[str] = GREETING_REPLIES, rng: random.Random | None = None
) -> str:
    chooser = rng or random
    return chooser.choice(list(replies))
