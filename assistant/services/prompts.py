"""Prompt builders for every structured and free-text AI call.

Each structured prompt spells out the JSON shape that the matching schema in
``assistant.schemas.intents`` validates.
"""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from assistant.models.enums import AccountType, BabylonPrinciple, LeadStatus, TransactionCategory

JSON_REMINDER = "Return ONLY valid JSON. No markdown, no commentary outside the JSON object."


def datetime_context(now: Optional[datetime] = None, tz_name: str = "Africa/Johannesburg") -> str:
    now = (now or datetime.now(timezone.utc)).astimezone(ZoneInfo(tz_name))
    weekend = " (weekend)" if now.weekday() >= 5 else ""
    return (
        f"CURRENT DATE/TIME: {now.strftime('%A, %d %B %Y %H:%M')}{weekend} ({tz_name}). "
        f"ISO date today: {now.strftime('%Y-%m-%d')}."
    )


def _options(enum_cls) -> str:
    return ", ".join(f'"{member.value}"' for member in enum_cls)


def sales_intent_prompt(user_context: str, conversation_history: Optional[str] = None, now=None, tz_name=None) -> str:
    prompt = f"""You are a sharp, friendly sales CRM assistant. Turn the user's message into ONE structured action.

{datetime_context(now, tz_name or "Africa/Johannesburg")}

ACTIONS:
- "create": a new prospect/lead is mentioned ("new lead ...", "met ...")
- "update": progress on an existing lead (contacted, replied, status change, follow-up, notes)
- "view": details of one lead
- "query": a list of leads (today's follow-ups, overdue, new, interested, all)
- "delete": remove a lead
- "summary": pipeline summary
- "conversation": anything else about sales (advice, chat, performance questions)

LEAD STATUS VALUES: {_options(LeadStatus)}

RESPONSE FORMAT:
{{
  "action": "create|update|view|query|delete|summary|conversation",
  "contextualOpening": "one short natural sentence",
  "contactName": "business or person name without filler words, or null",
  "phone": "phone number or null",
  "updates": {{
    "contacted": true|false|null, "replied": true|false|null, "interested": true|false|null,
    "status": "one of the status values or null", "nextStep": "text or null",
    "nextFollowup": "ISO-8601 datetime or null", "notes": "new information only, or null", "phone": "or null"
  }},
  "suggestions": [{{"type": "followup|strategy|timing", "suggestion": "...", "reason": "...", "priority": "high|medium|low"}}],
  "salesWisdom": "optional short insight or null",
  "smartAdvice": ["optional tips"]
}}

Keep simple actions terse: leave suggestions, salesWisdom and smartAdvice empty unless they add real value.
{user_context}"""
    if conversation_history:
        prompt += f"\n\n=== CONVERSATION HISTORY ===\n{conversation_history}\n=== END HISTORY ===\n"
    return prompt + f"\n{JSON_REMINDER}"


def finance_intent_prompt(user_context: str, conversation_history: Optional[str] = None, now=None, tz_name=None) -> str:
    prompt = f"""You are a personal finance assistant guided by the principles of "The Richest Man in Babylon".
Turn the user's message into ONE structured action.

{datetime_context(now, tz_name or "Africa/Johannesburg")}

ACTIONS: "add_transaction", "update_account", "check_goal", "summary", "delete_transaction",
"delete_account", "timeline", "edit_transaction", "conversation".

AMOUNTS: money spent is negative, money received is positive. "R" means South African Rand.
CATEGORIES: {_options(TransactionCategory)}
BABYLON PRINCIPLES: {_options(BabylonPrinciple)}
ACCOUNT TYPES: {_options(AccountType)}

RESPONSE FORMAT:
{{
  "action": "...",
  "contextualOpening": "one short natural sentence",
  "transaction": {{"id": "id or null", "description": "...", "amount": -89.5, "category": "...",
                  "babylonPrinciple": "or null", "date": "ISO-8601 or null"}},
  "account": {{"id": "or null", "name": "...", "type": "...", "currentBalance": 0, "targetAmount": null}},
  "babylonWisdom": "optional short wisdom or null",
  "suggestions": [{{"action": "...", "reason": "..."}}],
  "smartAdvice": ["optional tips"],
  "grouping": "week|month"
}}
{user_context}"""
    if conversation_history:
        prompt += f"\n\n=== CONVERSATION HISTORY ===\n{conversation_history}\n=== END HISTORY ===\n"
    return prompt + f"\n{JSON_REMINDER}"


def sales_duplicate_prompt() -> str:
    return f"""You are a sales lead duplicate detector. Decide if the NEW LEAD is the same business/person as one of
the EXISTING LEADS.

DUPLICATE: same name ignoring case/punctuation, same phone number, clear abbreviations ("Dan's" vs "Dandrom"),
obvious typos, business-type variations ("ABC Corp" vs "ABC Corporation", "John's Hotel" vs "John's Guest House").
UNIQUE: different core names, different owners, same name but clearly different kind of business.
When in doubt lean toward DUPLICATE.

RESPONSE FORMAT:
{{"result": "DUPLICATE" | "UNIQUE", "confidence": 0.0-1.0, "reasoning": "brief explanation",
 "matchedLead": "exact existing lead name if duplicate, else null"}}
{JSON_REMINDER}"""


def finance_duplicate_prompt() -> str:
    return f"""You are a transaction duplicate detector. Decide if the NEW TRANSACTION repeats one of the RECENT
TRANSACTIONS.

DUPLICATE: same amount within a few days, same merchant and amount, same description and similar amount,
a recurring payment entered twice.
UNIQUE: different amounts, different merchants, different categories, more than 7 days apart,
or a legitimate recurring pattern.

RESPONSE FORMAT:
{{"result": "DUPLICATE" | "UNIQUE", "confidence": 0.0-1.0, "reasoning": "brief explanation",
 "matchedLead": null, "matchedTransaction": "exact description of the matched transaction, else null"}}
{JSON_REMINDER}"""


def progress_detection_prompt(domain: str, message: str) -> str:
    if domain == "sales":
        guidance = """ONLY return true for GENERAL progress requests such as "How am I doing with sales?",
"Show me my performance", "What are my conversion rates?".
NEVER return true when the message names a specific lead, asks "should I/we" about an action,
or is about managing an individual lead."""
    else:
        guidance = """Progress requests ask about financial performance, health, net worth, savings rate,
wealth building, Babylon principles or overall metrics."""
    return f"""Decide whether this user message asks for an overall {domain} progress report.

User message: "{message}"

{guidance}

RESPONSE FORMAT:
{{"isProgressRequest": true|false, "confidence": 0.0-1.0, "reasoning": "why"}}
{JSON_REMINDER}"""


def progress_report_prompt(domain: str) -> str:
    focus = (
        "pipeline growth, conversion funnel, follow-up discipline and pipeline value"
        if domain == "sales"
        else "net worth, savings rate, spending, goals and adherence to the Babylon principles"
    )
    return f"""You are a {domain} performance analyst. The user message contains JSON metrics.
Write a concise, encouraging but honest report focused on {focus}.

RESPONSE FORMAT:
{{"type": "{domain}", "summary": "...", "metrics": {{}}, "insights": ["..."],
 "recommendations": [{{"action": "...", "priority": "high|medium|low", "reason": "...", "expectedImpact": "..."}}],
 "trends": {{"positive": ["..."], "concerning": ["..."], "neutral": ["..."]}}, "nextSteps": ["..."]}}
{JSON_REMINDER}"""


def conversation_prompt(user_context: str, conversation_history: Optional[str] = None, now=None, tz_name=None) -> str:
    prompt = f"""You are a friendly personal assistant for a small-business owner, with two tools:
"sales" (lead CRM) and "finance" (transactions, accounts, savings goals).

{datetime_context(now, tz_name or "Africa/Johannesburg")}

ROUTING:
- Anything about leads, prospects, clients, follow-ups, pipeline -> toolCalls [{{"tool": "sales"}}]
- Anything about money, expenses, income, accounts, budgets, goals -> toolCalls [{{"tool": "finance"}}]
- Setup, greetings, help and small talk -> no tool calls
- Do NOT handle bare confirmation replies such as "yes", "no", "update", "show"; they are handled elsewhere.

SETUP EXTRACTION:
- "set_username" when the user offers a username, "set_name" when they tell you their name,
- "set_notifications" with value enable_morning|disable_morning|enable_evening|disable_evening|enable_both|disable_both.
- Include a confidence 0.0-1.0 for each setup action.

RESPONSE FORMAT:
{{"response": "your reply (may be empty when a tool will answer)", "context": "general|sales|finance",
 "setupActions": [{{"action": "set_username|set_name|set_notifications", "value": "...", "confidence": 0.9}}],
 "toolCalls": [{{"tool": "sales|finance"}}]}}
{user_context}"""
    if conversation_history:
        prompt += f"\n\n=== CONVERSATION HISTORY ===\n{conversation_history}\n=== END HISTORY ===\n"
    return prompt + f"\n{JSON_REMINDER}"


def morning_digest_prompt(due_leads: str, recent_transactions: str, user_insights: str) -> str:
    return f"""Write a short, warm morning message (plain text, max ~12 lines, light emoji use) that helps the user
plan their day. Mention overdue and due follow-ups first, then a quick money note, then one motivating line.
If there is nothing due, keep it to two or three lines.

DUE AND OVERDUE LEADS: {due_leads}
RECENT TRANSACTIONS (3 days): {recent_transactions}
USER INSIGHTS: {user_insights}"""


def evening_summary_prompt(today_activities: str, tomorrow_tasks: str, progress_data: str) -> str:
    return f"""Write a short, encouraging evening wrap-up (plain text, max ~12 lines, light emoji use).
Celebrate what got done today, list tomorrow's follow-ups with times, and end with one progress insight.

TODAY: {today_activities}
TOMORROW'S TASKS: {tomorrow_tasks}
PROGRESS: {progress_data}"""
