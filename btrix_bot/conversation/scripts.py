"""Scripted messages for every conversation state.

Prompts are keyed by the state being *entered*: the text returned for
``State.BOOK_EMAIL`` is the question asked while waiting for the email.
"""

from typing import Any, Optional

from btrix_bot.schemas.booking_schema import BookingConfirmation
from btrix_bot.schemas.session_schema import State
from btrix_bot.tools.pricing import format_amount, get_agent_info, get_plan_info

WELCOME_MESSAGE = (
    "Hi! I'm BTRIX.\n"
    "I help businesses automate sales, support and operations.\n"
    "What would you like to do today?\n"
    "1) Pricing & Plans\n"
    "2) AI Agents\n"
    "3) Support\n"
    "4) Book a Demo"
)

MENU_REPROMPT = "Please reply with 1, 2, 3, or 4."

PLAN_OPTIONS = ["Essential", "Pro", "Enterprise"]
AGENT_OPTIONS = ["Sales", "Marketing", "Finance", "Inventory", "Social Media", "Design", "Video"]
CHANNEL_OPTIONS = ["WhatsApp", "Website Chat", "Email", "Instagram/Facebook"]
GOAL_OPTIONS = ["More leads & sales", "Faster support", "Bookings & scheduling", "Operations automation"]


def _numbered(options: list[str]) -> str:
    return "\n".join(f"{i}) {option}" for i, option in enumerate(options, start=1))


PLAN_CHOOSER = "Got it. Which plan are you interested in?\n" + _numbered(PLAN_OPTIONS)

AGENT_CHOOSER = "Sure. Which area are you looking to improve?\n" + _numbered(
    [option if option != "Design" else "Design (Images)" for option in AGENT_OPTIONS]
)

CHOOSER_REPROMPT = "I didn't catch that. Please pick one of these:\n"

SUPPORT_PROMPT = "Of course. Please describe the issue in one sentence."
ESCALATE_PROMPT = "I can escalate this to a human during business hours. What's the best email to reach you?"
ESCALATION_ACK = (
    "Thanks. I've passed your request to the team and someone will email you "
    "at {email} during business hours."
)

AWAIT_CONFIRMATION_MESSAGE = "Once you pick a time, I'll be ready here if you need anything."
ALREADY_CONFIRMED_MESSAGE = "Your demo is already confirmed. Looking forward to meeting you!"
NO_LINK_MESSAGE = (
    "Thanks. A human will confirm available times during business hours. "
    "What's your preferred date (DD/MM) and timezone?"
)
START_OVER_MESSAGE = "I apologize for the confusion. Let me start over."

INVALID_INPUT_MESSAGES = {
    "email": "That doesn't look like a valid email. Please provide your work email.",
    "phone": "That doesn't look like a valid phone number. Please include country code (e.g., +1234567890).",
    "name": "Please provide your name (at least 2 characters).",
}
DEFAULT_INVALID_MESSAGE = "Invalid input. Please try again."

# Re-asked when a required free-text answer comes back empty.
REDIRECT_MESSAGES = {
    State.BOOK_COMPANY: "Just to confirm, what's your company name?",
    State.BOOK_EMPLOYEES: "Just to confirm, how many employees does your company have?",
    State.BOOK_CHANNEL: "Just to confirm, which channel matters most to you?",
    State.BOOK_GOAL: "Just to confirm, what's your main goal?",
}

CLARIFICATION_MESSAGES = {
    "en": (
        "I don't have specific information about that yet. I can help you with:\n"
        "1) Pricing & Plans\n2) AI Agents\n3) Support\n4) Book a Demo\n"
        "Which one is closest to what you need?"
    ),
    "pt-BR": (
        "Ainda não tenho informações específicas sobre isso. Posso ajudar com:\n"
        "1) Preços e Planos\n2) Agentes de IA\n3) Suporte\n4) Agendar uma Demo\n"
        "Qual deles está mais próximo do que você precisa?"
    ),
    "es": (
        "Todavía no tengo información específica sobre eso. Puedo ayudarte con:\n"
        "1) Precios y Planes\n2) Agentes de IA\n3) Soporte\n4) Reservar una Demo\n"
        "¿Cuál se acerca más a lo que necesitas?"
    ),
}

RETRIEVAL_ERROR_MESSAGES = {
    "en": (
        "Sorry, I couldn't look that up right now. I can still help with pricing, "
        "AI agents or support, or you can book a demo."
    ),
    "pt-BR": (
        "Desculpe, não consegui consultar isso agora. Ainda posso ajudar com preços, "
        "agentes de IA ou suporte, ou você pode agendar uma demo."
    ),
    "es": (
        "Lo siento, no pude consultarlo ahora. Aún puedo ayudarte con precios, "
        "agentes de IA o soporte, o puedes reservar una demo."
    ),
}


def localized(messages: dict[str, str], language: str) -> str:
    return messages.get(language, messages["en"])


def plan_detail(plan: str) -> str:
    """Detail text for a plan, with prices taken from the price list."""
    info = get_plan_info(plan)
    if info is None:
        return PLAN_CHOOSER
    price = info["price"]
    header = f"**{price.label}**"
    if info["badge"]:
        header += f" ({info['badge']})"
    monthly = format_amount(price.monthly_amount, price.is_minimum)
    setup = format_amount(price.setup_amount, price.is_minimum)
    includes = "\n".join(f"• {item}" for item in info["includes"])
    return (
        f"{header}\n{monthly}/month ({setup} setup)\n\n"
        f"Best for: {info['best_for']}\n\n"
        f"Includes:\n{includes}\n\n"
        "Would you like to book a demo or ask a quick question?"
    )


def agent_detail(agent: str) -> str:
    """Detail text for an add-on agent, with its price taken from the price list."""
    info = get_agent_info(agent)
    if info is None:
        return AGENT_CHOOSER
    price = info["price"]
    does = "\n".join(f"• {item}" for item in info["does"])
    return (
        f"**{price.label}**: {format_amount(price.monthly_amount)}/month\n\n"
        f"What it does:\n{does}\n\n"
        "Note: Requires an active BTRIX pack.\n\n"
        "Would you like to book a demo to see it in action?"
    )


def booking_prompt(state: State, data: Optional[dict[str, Any]] = None) -> str:
    """Question asked on entering a booking state."""
    data = data or {}
    if state in (State.BOOK_START, State.BOOK_NAME):
        return "Great. What's your first name?"
    if state == State.BOOK_EMAIL:
        name = data.get("name")
        return f"Thanks, {name}. What's your work email?" if name else "What's your work email?"
    if state == State.BOOK_PHONE:
        return "Perfect. What's your phone number (with country code)?"
    if state == State.BOOK_COMPANY:
        return "What's your company name?"
    if state == State.BOOK_EMPLOYEES:
        return "How many employees does your company have?"
    if state == State.BOOK_CHANNEL:
        return "Which channel matters most right now?\n" + _numbered(CHANNEL_OPTIONS)
    if state == State.BOOK_GOAL:
        return "Thanks. Last question: what's your main goal?\n" + _numbered(GOAL_OPTIONS)
    if state == State.BOOK_SEND_LINK:
        return send_link_message(data.get("bookingLink"), data.get("timezone"))
    if state == State.BOOK_AWAIT_CONFIRMATION:
        return AWAIT_CONFIRMATION_MESSAGE
    raise ValueError(f"No booking prompt for state {state.value}")


def send_link_message(booking_link: Optional[str], timezone: Optional[str]) -> str:
    if not booking_link:
        return NO_LINK_MESSAGE
    return (
        f"Perfect. Please choose an exact date and time here: {booking_link}. "
        f"Your timezone is {timezone or 'UTC'}."
    )


def preference_message(preference: str, booking_link: Optional[str]) -> str:
    if not booking_link:
        return NO_LINK_MESSAGE
    return (
        f"Thanks, {preference} is noted as your preference. "
        f"To lock an exact time, please choose a slot here: {booking_link}."
    )


def confirmed_message(record: BookingConfirmation) -> Optional[str]:
    """Confirmation text, or None unless the record is fully confirmed."""
    if not record.is_confirmed():
        return None
    return (
        f"Your demo is confirmed for {record.start_datetime} {record.timezone}. "
        "Check your email for the calendar invite."
    )


def invalid_input_message(validation: Optional[str]) -> str:
    return INVALID_INPUT_MESSAGES.get(validation or "", DEFAULT_INVALID_MESSAGE)


def chooser_reprompt(state: State) -> str:
    options = PLAN_OPTIONS if state == State.PRICING_SELECT else AGENT_OPTIONS
    return CHOOSER_REPROMPT + _numbered(options)
