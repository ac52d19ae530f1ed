"""
Tool executors and router for the commerce responder.

The ToolRouter exposes a fixed capability set to the completion service:
- search_products - ranked catalog search
- add_to_cart - add a product line (stock-checked)
- view_cart - current lines and total
- remove_from_cart - drop a product's lines
- create_checkout - order + payment link, clears the cart
- check_order_status - most recent matching order

Business failures (empty cart, unknown product, insufficient stock) are returned as
{"error": ...} payloads and fed back to the model. Storage failures propagate.
"""

import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from ..core import dao
from ..util.logging import logger

SEARCH_LIMIT = 5

MATCH_SCORES = {
    "exact_sku": 1.0,
    "exact_title": 0.9,
    "title_prefix": 0.8,
    "title_contains": 0.7,
    "description": 0.5,
}


@dataclass
class ToolContext:
    """What an executor may touch: one conversation in one workspace."""
    workspace_id: str
    conversation_id: str
    customer_phone: str


def _match_type(product: Dict[str, Any], query: str) -> Optional[str]:
    title = (product.get("title") or "").lower()
    sku = (product.get("sku") or "").lower()
    description = (product.get("description") or "").lower()

    if sku and sku == query:
        return "exact_sku"
    if title == query:
        return "exact_title"
    if title.startswith(query):
        return "title_prefix"
    if query in title:
        return "title_contains"
    if query in description:
        return "description"
    return None


def search_products(ctx: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
    query = str(args.get("query") or "").strip().lower()
    if not query:
        return {"error": "Search query is required", "products": []}

    max_price = args.get("max_price")
    try:
        max_price = float(max_price) if max_price is not None else None
    except (TypeError, ValueError):
        max_price = None

    ranked = []
    for product in dao.list_active_products(ctx.workspace_id, args.get("category"), max_price):
        match_type = _match_type(product, query)
        if match_type:
            ranked.append((MATCH_SCORES[match_type], product, match_type))
    ranked.sort(key=lambda r: (-r[0], r[1]["title"]))

    products = [
        {
            "id": p["id"],
            "title": p["title"],
            "price": p["price"],
            "category": p["category"],
            "sku": p["sku"],
            "description": (p["description"] or "")[:200],
            "image_url": p["image_url"],
            "in_stock": p["stock_quantity"] is None or p["stock_quantity"] > 0,
            "match_type": match_type,
            "match_score": score,
        }
        for score, p, match_type in ranked[:SEARCH_LIMIT]
    ]
    return {"products": products}


def add_to_cart(ctx: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
    product_id = args.get("product_id")
    if not product_id:
        return {"error": "product_id is required"}
    try:
        quantity = int(args.get("quantity") or 1)
    except (TypeError, ValueError):
        return {"error": "Invalid quantity"}
    if quantity < 1:
        return {"error": "Invalid quantity"}

    product = dao.get_product(ctx.workspace_id, str(product_id))
    if not product or not product["is_active"]:
        return {"error": "Product not found"}

    stock = product["stock_quantity"]
    if stock is not None and stock < quantity:
        return {"error": "Insufficient stock", "available": stock}

    line = {
        "product_id": product["id"],
        "title": product["title"],
        "price": product["price"],
        "quantity": quantity,
        "variant_info": args.get("variant_info"),
        "image_url": product["image_url"],
        "added_at": datetime.now(timezone.utc).isoformat(),
    }
    items = dao.get_cart(ctx.conversation_id) + [line]
    total = dao.save_cart(ctx.conversation_id, items, interaction_type="shopping")
    return {"success": True, "cart_count": len(items), "cart_total": total, "added_item": line}


def view_cart(ctx: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
    items = dao.get_cart(ctx.conversation_id)
    total = round(sum(float(i["price"]) * int(i["quantity"]) for i in items), 2)
    return {"items": items, "total": total, "count": len(items)}


def remove_from_cart(ctx: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
    product_id = args.get("product_id")
    if not product_id:
        return {"error": "product_id is required"}

    items = dao.get_cart(ctx.conversation_id)
    remaining = [i for i in items if i["product_id"] != product_id]
    if len(remaining) == len(items):
        return {"error": "Product not in cart"}

    total = dao.save_cart(ctx.conversation_id, remaining)
    return {"success": True, "cart_count": len(remaining), "cart_total": total}


def create_checkout(ctx: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
    # Cart is read inside the order transaction, never from the turn's snapshot
    order = dao.create_order_from_cart(ctx.workspace_id, ctx.conversation_id)
    if order is None:
        return {"error": "Cart is empty"}
    return {
        "success": True,
        "order_number": order["order_number"],
        "payment_link": order["payment_link"],
        "payment_link_expires_at": order["payment_link_expires_at"],
        "total": order["total"],
    }


def check_order_status(ctx: ToolContext, args: Dict[str, Any]) -> Dict[str, Any]:
    order = dao.get_latest_order(ctx.workspace_id, ctx.customer_phone, args.get("order_number"))
    if not order:
        return {"error": "No orders found"}
    return {
        "order_number": order["order_number"],
        "status": order["status"],
        "payment_status": order["payment_status"],
        "total": order["total"],
        "tracking_number": order["tracking_number"],
        "created_at": order["created_at"],
    }


class ToolRouter:
    """Registry of tool executors plus the schema advertised to the model."""

    def __init__(self):
        self.tools: Dict[str, Dict[str, Any]] = {}
        self._register_tools()

    def _register_tools(self):
        self.tools = {
            "search_products": {
                "function": search_products,
                "description": "Search the product catalog by name, category, keywords, or description. "
                               "Use this when customer wants to browse or find products.",
                "parameters": {
                    "query": {"type": "string", "required": True,
                              "description": "What to search for (e.g., 'running shoes', 'Nike', 'red dress')"},
                    "category": {"type": "string", "required": False, "description": "Optional category filter"},
                    "max_price": {"type": "number", "required": False, "description": "Optional maximum price filter"},
                },
            },
            "add_to_cart": {
                "function": add_to_cart,
                "description": "Add a product to the customer's shopping cart. "
                               "Use this when customer explicitly says they want to buy or add something.",
                "parameters": {
                    "product_id": {"type": "string", "required": True, "description": "ID of the product"},
                    "quantity": {"type": "number", "required": False, "default": 1, "description": "Quantity to add"},
                    "variant_info": {"type": "string", "required": False,
                                     "description": "Size, color, or other variant details if mentioned"},
                },
            },
            "view_cart": {
                "function": view_cart,
                "description": "Show the customer their current shopping cart contents and total.",
                "parameters": {},
            },
            "remove_from_cart": {
                "function": remove_from_cart,
                "description": "Remove a product from the cart.",
                "parameters": {
                    "product_id": {"type": "string", "required": True, "description": "ID of product to remove"},
                },
            },
            "create_checkout": {
                "function": create_checkout,
                "description": "Generate a payment link for checkout. Use this when customer is ready to pay "
                               "or says 'checkout', 'buy now', 'I'll take it', etc.",
                "parameters": {},
            },
            "check_order_status": {
                "function": check_order_status,
                "description": "Check the status of the customer's most recent order, or a specific order number.",
                "parameters": {
                    "order_number": {"type": "string", "required": False,
                                     "description": "Optional order number, e.g. ORD-20240101-AB12C"},
                },
            },
        }

    def schema(self) -> List[Dict[str, Any]]:
        """Function-calling schema for every registered tool."""
        schema = []
        for name, tool in self.tools.items():
            properties = {}
            for param, spec in tool["parameters"].items():
                properties[param] = {"type": spec["type"], "description": spec["description"]}
                if "default" in spec:
                    properties[param]["default"] = spec["default"]
            schema.append({
                "type": "function",
                "function": {
                    "name": name,
                    "description": tool["description"],
                    "parameters": {
                        "type": "object",
                        "properties": properties,
                        "required": [p for p, spec in tool["parameters"].items() if spec["required"]],
                    },
                },
            })
        return schema

    def get_available_tools(self) -> List[str]:
        return list(self.tools.keys())

    async def call_tool(self, name: str, arguments: Dict[str, Any], ctx: ToolContext) -> Dict[str, Any]:
        """
        Execute one tool call.

        Args:
            name: Tool name requested by the model
            arguments: Tool arguments
            ctx: Conversation the call is scoped to

        Returns:
            Tool result, or {"error": ...}
        """
        tool = self.tools.get(name)
        if tool is None:
            result = {"error": "Unknown tool"}
            logger.log_tool_call(name, ctx.conversation_id, arguments or {}, result)
            return result

        executor: Callable[[ToolContext, Dict[str, Any]], Dict[str, Any]] = tool["function"]
        start = time.perf_counter()
        result = executor(ctx, arguments or {})
        logger.log_tool_call(name, ctx.conversation_id, arguments or {}, result,
                             (time.perf_counter() - start) * 1000)
        return result


def tool_succeeded(result: Any) -> bool:
    return isinstance(result, dict) and "error" not in result
