"""轻量级 i18n 框架 — 零外部依赖。

用法::

    from i18n import t, set_locale

    set_locale("en_US")
    print(t("server.full"))   # → "Server is full, please try again later"
    print(t("cli.snapshot", state="connected", count=3))
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

logger = logging.getLogger(__name__)

_LOCALE_DIR = Path(__file__).parent
_SUPPORTED = ("zh_CN", "en_US")

_locale: str = os.environ.get("SNAKE_RELAY_LOCALE", "zh_CN")
if _locale not in _SUPPORTED:
    _locale = "zh_CN"
_tables: dict[str, dict[str, str]] = {}


def _load_table(locale: str) -> dict[str, str]:
    """按需加载翻译表。优先 JSON，回退到 .py 模块。"""
    json_path = _LOCALE_DIR / f"{locale}.json"
    if json_path.exists():
        with open(json_path, encoding="utf-8") as f:
            data = json.load(f)
        # 过滤掉 __meta__ 等非翻译键
        return {k: v for k, v in data.items() if not k.startswith("__")}

    if locale == "zh_CN":
        from .zh_CN import STRINGS
    elif locale == "en_US":
        from .en_US import STRINGS
    else:
        raise ValueError(f"Unsupported locale: {locale}")
    return STRINGS


def set_locale(locale: str) -> None:
    """设置当前语言。"""
    global _locale
    # 预加载以确保 locale 有效
    if locale not in _tables:
        _tables[locale] = _load_table(locale)
    _locale = locale


def get_locale() -> str:
    """获取当前语言。"""
    return _locale


def get_available_locales() -> list[str]:
    """返回所有可用的 locale 列表。"""
    return list(_SUPPORTED)


def t(key: str, **kwargs: object) -> str:
    """翻译函数。

    查找当前 locale 对应的字符串，用 ``kwargs`` 做 format 替换。
    若 key 缺失则回退到 zh_CN，仍缺失则返回 ``[key]``。
    """
    if _locale not in _tables:
        _tables[_locale] = _load_table(_locale)

    template = _tables[_locale].get(key)

    if template is None and _locale != "zh_CN":
        if "zh_CN" not in _tables:
            _tables["zh_CN"] = _load_table("zh_CN")
        template = _tables["zh_CN"].get(key)
        if template is not None:
            logger.debug("i18n fallback: '%s' not in %s, using zh_CN", key, _locale)

    if template is None:
        logger.warning("i18n missing key: '%s' (lang=%s)", key, _locale)
        return f"[{key}]"

    if kwargs:
        try:
            return template.format_map(kwargs)
        except KeyError as e:
            logger.warning("i18n format error: key='%s', missing=%s", key, e)
            return template
    return template


# ── 便捷别名 ──
_ = t
