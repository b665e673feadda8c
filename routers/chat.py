import json
import logging
from datetime import date, timedelta
from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from typing import List
from openai import OpenAI

import config
from database import get_store
from errors import LedgerError
from formatting import format_amount
from gate import ConsistencyGate
from ledger import LedgerStore
from models import TransactionType
from projector import BalanceProjector
import models, auth

router = APIRouter(prefix="/api/chat", tags=["Chat"])
logger = logging.getLogger(__name__)


# ─────────────────────────── SCHEMAS ───────────────────────────

class ChatMessage(BaseModel):
    role: str      # "user" | "assistant"
    content: str

class ChatRequest(BaseModel):
    messages: List[ChatMessage]


# ─────────────────────────── TOOLS DEFINITION ───────────────────────────

TOOLS = [
    {
        "type": "function",
        "function": {
            "name": "add_transaction",
            "description": "Record a new expense or income for the user",
            "parameters": {
                "type": "object",
                "properties": {
                    "amount":        {"type": "number", "description": "Amount (positive number)"},
                    "description":   {"type": "string", "description": "What the transaction was for"},
                    "category_name": {"type": "string", "description": "Category name (use list_categories to get available ones)"},
                    "type":          {"type": "string", "enum": ["EXPENSE", "INCOME"], "description": "Defaults to EXPENSE"},
                    "date":          {"type": "string", "description": "Date in YYYY-MM-DD format, defaults to today if not specified"},
                },
                "required": ["amount", "description", "category_name"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "get_spending_summary",
            "description": "Get income, expenses and balance for a given period",
            "parameters": {
                "type": "object",
                "properties": {
                    "period": {
                        "type": "string",
                        "enum": ["today", "yesterday", "week", "month", "year"],
                        "description": "Time period",
                    }
                },
                "required": ["period"],
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "list_transactions",
            "description": "List recent transactions, optionally filtered by category",
            "parameters": {
                "type": "object",
                "properties": {
                    "limit":         {"type": "integer", "description": "Max number of transactions (default 10, max 20)"},
                    "category_name": {"type": "string",  "description": "Filter by category name (optional)"},
                    "period":        {"type": "string",  "enum": ["today", "week", "month"], "description": "Filter by period (optional)"},
                },
            },
        },
    },
    {
        "type": "function",
        "function": {
            "name": "list_categories",
            "description": "Get all categories of the user",
            "parameters": {"type": "object", "properties": {}},
        },
    },
    {
        "type": "function",
        "function": {
            "name": "list_budgets",
            "description": "Get budgets with allocated, spent and remaining amounts per category",
            "parameters": {"type": "object", "properties": {}},
        },
    },
    {
        "type": "function",
        "function": {
            "name": "list_bills",
            "description": "Get bills with their status (UPCOMING, PAID or OVERDUE) and due date",
            "parameters": {"type": "object", "properties": {}},
        },
    },
    {
        "type": "function",
        "function": {
            "name": "savings_progress",
            "description": "Get savings goals and how far along each one is",
            "parameters": {"type": "object", "properties": {}},
        },
    },
]


# ─────────────────────────── TOOL EXECUTION ───────────────────────────

def _date_range(period: str, today: date = None):
    today = today or date.today()
    if period == "yesterday":
        d = today - timedelta(days=1)
        return d, d
    if period == "week":
        return today - timedelta(days=7), today
    if period == "month":
        return today.replace(day=1), today
    if period == "year":
        return today.replace(month=1, day=1), today
    return today, today


def _find_category(store: LedgerStore, user_id: int, name: str):
    """Exact name match first, then a substring match."""
    cats = store.find_many(models.Category, where={"user_id": user_id}, order_by="name")
    lowered = name.strip().lower()
    for c in cats:
        if c.name.lower() == lowered:
            return c
    for c in cats:
        if lowered in c.name.lower():
            return c
    return None


def _dump(data) -> str:
    return json.dumps(data, ensure_ascii=False, default=str)


def execute_tool(name: str, args: dict, user: models.User, store: LedgerStore) -> str:
    projector = BalanceProjector(store)

    def money(amount) -> str:
        return format_amount(amount, user)

    if name == "list_categories":
        cats = store.find_many(models.Category, where={"user_id": user.id}, order_by="name")
        return _dump([{"name": c.name, "type": c.type.value, "icon": c.icon} for c in cats])

    if name == "get_spending_summary":
        period = args.get("period", "month")
        date_from, date_to = _date_range(period)
        stats = projector.transaction_stats(user.id, date_from, date_to)
        return _dump({
            "period":       period,
            "income":       money(stats.summary.total_income),
            "expenses":     money(stats.summary.total_expenses),
            "balance":      money(stats.summary.balance),
            "transactions": stats.summary.transaction_count,
            "top_categories": [
                {"category": c.name, "total": money(c.amount)} for c in stats.categories[:3]
            ],
        })

    if name == "list_transactions":
        limit = min(int(args.get("limit", 10)), 20)
        where = {"user_id": user.id}
        if args.get("period"):
            date_from, date_to = _date_range(args["period"])
            where["date"] = {"gte": date_from, "lte": date_to}
        if args.get("category_name"):
            cat = _find_category(store, user.id, args["category_name"])
            if cat:
                where["category_id"] = cat.id
        txs = store.find_many(models.Transaction, where=where, order_by=["-date", "-id"], take=limit)
        return _dump([
            {
                "id": t.id, "date": t.date, "amount": money(t.amount), "type": t.type.value,
                "description": t.description, "category": t.category.name,
            }
            for t in txs
        ])

    if name == "add_transaction":
        cat = _find_category(store, user.id, args.get("category_name", ""))
        if cat is None:
            return _dump({"success": False, "error": f"Unknown category: {args.get('category_name')}"})
        tx_date = date.fromisoformat(args["date"]) if args.get("date") else date.today()
        try:
            result = ConsistencyGate(store).create_transaction(
                user.id,
                amount=float(args["amount"]),
                type=TransactionType(args.get("type", "EXPENSE")),
                date=tx_date,
                description=args.get("description"),
                category_id=cat.id,
            )
        except LedgerError as e:
            return _dump({"success": False, "error": e.message})
        tx = result.record
        return _dump({
            "success": True, "id": tx.id, "amount": money(tx.amount),
            "description": tx.description, "date": tx.date, "category": cat.name,
        })

    if name == "list_budgets":
        budgets = store.find_many(models.Budget, where={"user_id": user.id}, order_by="-start_date")
        result = []
        for b in budgets:
            u = projector.budget_utilization(b.id)
            result.append({
                "name": u.name, "from": u.period_start, "to": u.period_end,
                "amount": money(u.amount), "allocated": money(u.allocated),
                "spent": money(u.spent), "remaining": money(u.remaining),
                "over_budget": [c.category_name for c in u.categories if c.over_budget],
            })
        return _dump(result)

    if name == "list_bills":
        bills = store.find_many(models.Bill, where={"user_id": user.id}, order_by="due_date")
        result = []
        for b in bills:
            s = projector.bill_status(b.id)
            result.append({
                "name": b.name, "amount": money(b.amount), "status": s.status.value,
                "due_date": s.due_date, "autopay": b.autopay,
            })
        return _dump(result)

    if name == "savings_progress":
        overview = projector.savings_overview(user.id)
        return _dump({
            "total_saved":  money(overview.total_saved),
            "total_target": money(overview.total_target),
            "goals": [
                {
                    "name": g.name, "saved": money(g.current_amount), "target": money(g.target_amount),
                    "progress": f"{g.progress_percentage}%", "completed": g.completed,
                }
                for g in overview.goals
            ],
        })

    return _dump({"error": f"Unknown tool: {name}"})


# ─────────────────────────── SYSTEM PROMPT ───────────────────────────

SYSTEM_PROMPT = """You are a personal finance assistant built into a budgeting app.
You help users keep track of budgets, bills and savings through natural conversation.

You CAN:
- Record new expenses or income (use add_transaction)
- Show income and spending summaries for any period (use get_spending_summary)
- List recent transactions (use list_transactions)
- Show budgets and how much of each category is left (use list_budgets)
- Show which bills are due, paid or overdue (use list_bills)
- Show progress on savings goals (use savings_progress)

Rules:
- Always respond in the SAME LANGUAGE the user writes in
- Be concise, short and clear
- When recording a transaction, confirm what you added (amount, description, category, date)
- Amounts returned by tools are already formatted; repeat them as they are
- Today's date is {today}
"""


# ─────────────────────────── ENDPOINT ───────────────────────────

@router.post("")
def chat(
    req: ChatRequest,
    store: LedgerStore = Depends(get_store),
    current_user: models.User = Depends(auth.get_current_user),
):
    if not config.OPENAI_API_KEY:
        raise HTTPException(status_code=503, detail="AI chat is not configured")

    client = OpenAI(api_key=config.OPENAI_API_KEY)

    system_msg = SYSTEM_PROMPT.replace("{today}", str(date.today()))
    messages = [{"role": "system", "content": system_msg}]
    messages += [{"role": m.role, "content": m.content} for m in req.messages]
    actions = []

    # Allow up to 5 tool call rounds
    for _ in range(5):
        response = client.chat.completions.create(
            model=config.OPENAI_MODEL,
            messages=messages,
            tools=TOOLS,
            tool_choice="auto",
        )
        msg = response.choices[0].message

        if not msg.tool_calls:
            return {"reply": msg.content, "actions": actions}

        messages.append(msg)
        for tc in msg.tool_calls:
            args   = json.loads(tc.function.arguments or "{}")
            logger.debug("Tool call %s(%s)", tc.function.name, args)
            result = execute_tool(tc.function.name, args, current_user, store)
            messages.append({
                "role":         "tool",
                "tool_call_id": tc.id,
                "content":      result,
            })
            # Lets the frontend refresh after a write
            if tc.function.name == "add_transaction":
                actions.append({"type": "transaction_added", "data": json.loads(result)})

    logger.warning("Chat for user #%s hit the tool round limit", current_user.id)
    return {"reply": "Sorry, I could not complete the request.", "actions": actions}
