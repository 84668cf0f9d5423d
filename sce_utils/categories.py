# Process-wide fixed dictionaries. Built once at import and exposed read-only;
# nothing in the engine mutates them.
from __future__ import annotations

from types import MappingProxyType
from typing import Mapping, NamedTuple, Tuple

# Applied in order before punctuation stripping.
TEXT_ALIASES: Tuple[Tuple[str, str], ...] = (
    ("超商", "便利商店"),
    ("小七", "7-eleven"),
    ("7-11", "7-eleven"),
    ("全家", "familymart"),
    ("早餐店", "早餐"),
    ("晚餐店", "晚餐"),
    ("咖啡廳", "咖啡"),
    ("飲料店", "飲料"),
)

STOP_WORDS = frozenset(
    {
        "的", "了", "在", "是", "我", "有", "和", "就", "不", "人",
        "都", "一", "一個", "上", "也", "很", "到", "說", "要", "去",
        "你", "會", "著", "沒", "看", "好", "自己", "這",
    }
)

# Category id -> keywords used by the keyword signal source.
KEYWORD_TO_CATEGORY: Mapping[str, Tuple[str, ...]] = MappingProxyType(
    {
        "food": (
            "早餐", "午餐", "晚餐", "宵夜", "餐廳", "小吃", "飲料",
            "咖啡", "茶", "便當", "麵", "飯", "湯",
        ),
        "transport": (
            "捷運", "公車", "計程車", "uber", "油錢", "停車",
            "高速公路", "過路費", "機票", "火車",
        ),
        "shopping": (
            "衣服", "鞋子", "包包", "化妝品", "書籍", "文具",
            "電子產品", "手機", "電腦",
        ),
        "medical": (
            "看病", "買藥", "健檢", "牙醫", "眼科", "藥局", "醫院", "診所", "藥品",
        ),
        "entertainment": (
            "電影", "ktv", "遊戲", "旅遊", "運動", "健身", "spa", "按摩", "唱歌",
        ),
        "daily": (
            "日用品", "清潔用品", "衛生紙", "洗髮精", "牙膏", "肥皂", "洗衣精",
        ),
    }
)

# Flattened view used by keyword extraction.
KNOWN_KEYWORDS = frozenset(k for kws in KEYWORD_TO_CATEGORY.values() for k in kws)

# Raw merchant substring -> merchant type; consulted before MERCHANT_TYPES.
MERCHANT_ALIASES: Mapping[str, str] = MappingProxyType(
    {
        "小七": "convenience_store",
        "7-11": "convenience_store",
        "全家": "convenience_store",
        "麥當勞": "fast_food",
        "肯德基": "fast_food",
        "星巴克": "cafe",
        "家樂福": "supermarket",
        "全聯": "supermarket",
    }
)

MERCHANT_TYPES: Mapping[str, Tuple[str, ...]] = MappingProxyType(
    {
        "convenience_store": (
            "7-eleven", "familymart", "全家", "小七", "萊爾富", "ok超商",
        ),
        "restaurant": ("餐廳", "restaurant", "麥當勞", "肯德基", "必勝客"),
        "cafe": ("星巴克", "咖啡", "starbucks", "cama", "路易莎"),
        "supermarket": ("家樂福", "大潤發", "全聯", "好市多", "costco"),
        "gas_station": ("中油", "台塑", "shell", "加油站"),
        "pharmacy": ("藥局", "藥妝", "屈臣氏", "康是美"),
    }
)


class AmountRange(NamedTuple):
    category_id: str
    min_amount: float
    max_amount: float


AMOUNT_RANGES: Tuple[AmountRange, ...] = (
    AmountRange("food", 50, 500),
    AmountRange("transport", 20, 200),
    AmountRange("daily", 30, 300),
    AmountRange("entertainment", 200, 2000),
)


class CategoryInfo(NamedTuple):
    name: str
    icon: str


CATEGORY_INFO: Mapping[str, CategoryInfo] = MappingProxyType(
    {
        "food": CategoryInfo("餐飲", "fas fa-utensils"),
        "transport": CategoryInfo("交通", "fas fa-car"),
        "shopping": CategoryInfo("購物", "fas fa-shopping-cart"),
        "medical": CategoryInfo("醫療", "fas fa-heartbeat"),
        "entertainment": CategoryInfo("娛樂", "fas fa-gamepad"),
        "daily": CategoryInfo("日常", "fas fa-home"),
    }
)

OTHER_CATEGORY = CategoryInfo("其他", "fas fa-question")


def category_info(category_id: str) -> CategoryInfo:
    """Display name and icon for a category id; unknown ids map to 'other'."""
    return CATEGORY_INFO.get(category_id, OTHER_CATEGORY)
