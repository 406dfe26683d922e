import json
import logging

import openai
from flask import Blueprint, current_app, jsonify

from ..errors import ServiceUnavailableError, UpstreamError
from ..schemas import ChatIn
from .chat_tools import run_tool, tool_definitions
from .common import current_user_id, get_db, login_required, parse_body, today

chat_bp = Blueprint("chat", __name__, url_prefix="/chat")
logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a helpful personal finance assistant for a budget tracking app. You help users:
- Add transactions (expenses and income) and bills
- Check spending summaries, budget status and the month-end spending forecast
- Contribute to savings goals

User's available categories: {categories}
User's accounts: {accounts}
Today's date: {today}

When adding transactions:
- Parse amounts, dates, and descriptions from natural language
- Suggest appropriate categories based on the description
- Default to today's date if not specified
- Default to the first account if not specified

Be concise and helpful. Use {currency} for amounts.

IMPORTANT: Never provide investment advice, tax advice, or financial planning recommendations.
If asked about investments or taxes, politely decline and suggest consulting a professional."""


def make_client(api_key, base_url=None):
    return openai.OpenAI(api_key=api_key, base_url=base_url)


def system_prompt(db, user_id):
    categories = db.execute(
        "SELECT name FROM categories WHERE user_id = ? AND is_archived = 0 ORDER BY name", (user_id,)
    ).fetchall()
    accounts = db.execute("SELECT name FROM accounts WHERE user_id = ? ORDER BY id", (user_id,)).fetchall()
    return SYSTEM_PROMPT.format(
        categories=", ".join(row["name"] for row in categories) or "None yet",
        accounts=", ".join(row["name"] for row in accounts) or "None yet",
        today=today().isoformat(),
        currency=current_app.config["CURRENCY"],
    )


def parse_arguments(raw):
    try:
        arguments = json.loads(raw or "{}")
    except json.JSONDecodeError:
        return {}
    return arguments if isinstance(arguments, dict) else {}


def complete(client, messages, tools=None):
    kwargs = {"model": current_app.config["OPENAI_MODEL"], "messages": messages}
    if tools:
        kwargs["tools"] = tools
    try:
        response = client.chat.completions.create(**kwargs)
    except openai.OpenAIError as e:
        logger.error("Chat completion failed: %s", e)
        raise UpstreamError("The assistant is unavailable right now")
    return response.choices[0].message


@chat_bp.post("")
@login_required
def chat():
    body = parse_body(ChatIn)
    api_key = current_app.config.get("OPENAI_API_KEY")
    if not api_key:
        raise ServiceUnavailableError("Chat is not configured")

    db = get_db()
    user_id = current_user_id()
    client = make_client(api_key, current_app.config.get("OPENAI_BASE_URL"))
    messages = [{"role": "system", "content": system_prompt(db, user_id)}]
    messages.extend(turn.model_dump() for turn in body.history)
    messages.append({"role": "user", "content": body.message})

    tools = tool_definitions()
    actions = []
    for _ in range(current_app.config["CHAT_MAX_TOOL_ROUNDS"]):
        message = complete(client, messages, tools)
        if not message.tool_calls:
            return jsonify({"reply": message.content or "", "actions": actions})

        messages.append(
            {
                "role": "assistant",
                "content": message.content,
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {"name": call.function.name, "arguments": call.function.arguments},
                    }
                    for call in message.tool_calls
                ],
            }
        )
        for call in message.tool_calls:
            arguments = parse_arguments(call.function.arguments)
            result = run_tool(db, user_id, call.function.name, arguments, today())
            logger.info("Chat tool %s for user %s: success=%s", call.function.name, user_id, result.get("success"))
            actions.append({"tool": call.function.name, "arguments": arguments, "result": result})
            messages.append({"role": "tool", "tool_call_id": call.id, "content": json.dumps(result)})

    # Tool budget spent; ask for a plain answer.
    message = complete(client, messages)
    return jsonify({"reply": message.content or "", "actions": actions})
