from typing import Any, Dict, List


def sort_menu_items(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Order by category, then name. Plain (case-sensitive) string comparison."""
    return sorted(items, key=lambda it: (it.get("category") or "", it.get("name") or ""))


def menu_categories(items: List[Dict[str, Any]]) -> List[str]:
    seen: List[str] = []
    for it in items:
        cat = it.get("category")
        if cat and cat not in seen:
            seen.append(cat)
    return ["all"] + seen


def filter_menu_items(items: List[Dict[str, Any]], category: str = "all",
                      search: str = "") -> List[Dict[str, Any]]:
    term = (search or "").lower()
    out = []
    for it in items:
        if category and category != "all" and it.get("category") != category:
            continue
        haystack = [it.get("name"), it.get("description"), it.get("category")]
        if term and not any(h and term in h.lower() for h in haystack):
            continue
        out.append(it)
    return out


def menu_item_profit(item: Dict[str, Any]) -> float:
    price = float(item.get("price") or 0)
    cost = float(item.get("cost") or 0)
    return round(price - cost, 2)


def profit_margin(item: Dict[str, Any]) -> int:
    """Whole-number percentage of price kept as profit."""
    price = float(item.get("price") or 0)
    if price <= 0:
        return 0
    return round(menu_item_profit(item) / price * 100)


def with_profit(item: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(item)
    out["profit"] = menu_item_profit(item)
    out["margin"] = profit_margin(item)
    return out
