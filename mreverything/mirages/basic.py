"""Conversation, info and placeholder service mirages.

Most intents outside the taxi flow answer with a fixed text; the few that
read ``extracted_data`` or the user record have small handlers below.
"""

from __future__ import annotations

from mreverything.brain.types import Intent
from mreverything.mirages.context import MirageContext, MirageHandler

HELP_TEXT = (
    "✨ *MR EVERYTHING MAGIC*\n\nI can help you with:\n🛍️ Shopping\n🍗 Food\n🏨 Hotels\n✈️ Flights\n"
    "🚐 Shared Taxis\n📱 Airtime & ⚡ Electricity\n\nJust tell me what you need! ✨"
)

CANNED: dict[Intent, str] = {
    # services
    Intent.SHOPPING: "🛍️ *MR EVERYTHING SHOPPING*\n\nSearching Takealot, Makro and Game for the best price... ✨",
    Intent.FOOD: "🍗 *MR EVERYTHING FOOD*\n\nChecking what's hot near you on Mr D and Uber Eats... 🍔",
    Intent.ACCOMMODATION: "🏨 *MR EVERYTHING STAYS*\n\nLooking for highly rated places to stay. Where and when? 🇿🇦",
    Intent.FLIGHTS: "✈️ *MR EVERYTHING FLIGHTS*\n\nSearching FlySafair, Airlink and Lift for the lowest local fares... ✨",
    Intent.FLIGHT_INTL: (
        "✈️ *INTERNATIONAL FLIGHTS*\n\nSearching for global routes and connections. Cape Town to London? "
        "Jo'burg to Dubai? I've got you! 🌍✨"
    ),
    Intent.CAR_RENTAL: "🚗 *MR EVERYTHING RENTAL*\n\nLooking for reliable wheels... 🗝️",
    Intent.BUSES: "🚌 *MR EVERYTHING BUSES*\n\nSearching Intercape and Greyhound schedules for you... One moment! 🎫",
    Intent.BUS_INTERCAPE: (
        "🚌 *INTERCAPE SEARCH*\n\nChecking Intercape Mainliner and Sleepliner availability for your route... 🎫"
    ),
    Intent.BUS_GREYHOUND: "🚌 *GREYHOUND SEARCH*\n\nBrowsing Greyhound Dreamliner schedules... One moment! 🎫",
    Intent.GROCERY: (
        "🛒 *MR EVERYTHING GROCERY*\n\nWant to save up to 20%? Join a Group-Buy and get bulk discounts "
        "from Shoprite, Makro, or Woolworths! 🇿🇦✨"
    ),
    Intent.GROCERY_MEAT: "🥩 *MR EVERYTHING MEAT*\n\nBrowsing local butchers and major retailers for the best cuts. Braai tonight? 🇿🇦🔥",
    Intent.GROCERY_VEG: "🥦 *MR EVERYTHING FRESH*\n\nFinding the crispest fruits and veggies from local markets and supermarkets. 🍏🥬✨",
    Intent.CART_ACTION: "🛒 *YOUR CART*\n\nYour cart is empty for now. Tell me what to add! ✨",
    # groups
    Intent.CREATE_GROUP: "👥 *PRIVATE GROUP-BUY*\n\nGroup-buys are coming soon. I'll let you know when you can invite friends! 🇿🇦✨",
    Intent.VIEW_GROUP: "🤔 You're not in a group-buy yet. Join one to see the shared magic! ✨",
    Intent.LEAVE_GROUP: "👋 You've left the group-buy. Your individual items are still in your personal cart! ✨",
    Intent.CHECK_IN: (
        "⏰ *CHECK-IN TIMER*\n\nYou've set a check-in for your grocery collection in 15 minutes. If you don't "
        "confirm safety by then, I'll notify the group admin! 🔐✨"
    ),
    # meta / info
    Intent.TRACK_ORDER: (
        "📦 *ORDER TRACKING*\n\nI'm checking your recent orders... You'll receive a notification as soon as "
        "the driver is en route! 🏃‍♂️💨"
    ),
    Intent.COMPLAINTS: (
        "🛠️ *MR EVERYTHING SUPPORT*\n\nI'm sorry to hear you're having trouble! I've flagged this for Jules. "
        "One of our humans will reach out to you shortly. 🇿🇦✨"
    ),
    Intent.FAQ: "❓ *MR EVERYTHING FAQ*\n\nAsk me about payments, delivery or cancellations and I'll explain the magic. ✨",
    Intent.REFUNDS: (
        "💸 *REFUND REQUEST*\n\nRefunds are processed within 3-5 business days to your original payment "
        "method. Please provide your Order ID to proceed. ✨"
    ),
    Intent.REFERRAL: (
        "🎁 *MR EVERYTHING REFERRALS*\n\nShare your code with friends! When they place their first order, "
        "you both get R50 concierge credit. 🇿🇦✨"
    ),
    Intent.LOYALTY: (
        "⭐ *MR EVERYTHING REWARDS*\n\nYou've earned 150 magic points! Keep using Mr Everything to unlock "
        "free deliveries and exclusive deals. ✨"
    ),
    Intent.GIFT_VOUCHERS: (
        "🎁 *GIFT VOUCHERS*\n\nNeed a last-minute gift? I can generate digital vouchers for Takealot, "
        "Netflix, and more! ✨"
    ),
    Intent.ABOUT_US: (
        "✨ *ABOUT MR EVERYTHING*\n\nWe're an autonomous AI concierge designed specifically for South "
        "Africans. We make buying anything as easy as a text message. 🇿🇦"
    ),
    Intent.CAREERS: (
        "💼 *JOIN THE MAGIC*\n\nWant to help build the future of commerce in SA? Send your CV to "
        "careers@mreverything.com! 🚀"
    ),
    # South African utilities
    Intent.WEATHER: "☀️ *SA WEATHER*\n\nChecking conditions for your area... It looks like a great day for a braai! 🇿🇦🔥",
    Intent.LOAD_SHEDDING: "💡 *LOAD SHEDDING UPDATE*\n\nStage 2 currently active. Checking schedules for your area... 🕯️",
    Intent.FUEL_PRICE: (
        "⛽ *FUEL PRICE ALERT*\n\nPetrol and Diesel prices updated. Checking the latest inland vs coastal "
        "rates for you... 🇿🇦"
    ),
    Intent.EVENTS: (
        "🎟️ *UPCOMING EVENTS*\n\nFrom rugby at Loftus to concerts in CPT Stadium, I'll find the best "
        "tickets for you! 🇿🇦✨"
    ),
    Intent.EXCHANGE_RATE: (
        "💱 *RAND RATE*\n\nChecking USD/ZAR, GBP/ZAR, and EUR/ZAR live for you. The Rand is looking... "
        "interesting today! 🇿🇦📈"
    ),
    # conversation flow
    Intent.CONVERSATIONAL: (
        "I'm Mr Everything, your personal assistant! 🇿🇦\n\nI can help you buy anything, order food, book "
        "flights, or even get airtime and electricity. Just tell me what you need! ✨"
    ),
    Intent.HELP: HELP_TEXT,
    Intent.UNKNOWN_INPUT: (
        "🤔 *MR EVERYTHING IS PUZZLED*\n\nI didn't quite catch that. I'm still learning! Try asking for "
        "food, shopping, or travel. ✨"
    ),
    # system
    Intent.MAINTENANCE: (
        "🛠️ *MR EVERYTHING MAINTENANCE*\n\nI'm taking a quick power nap while Jules performs some magic "
        "updates. I'll be back shortly! ✨"
    ),
    Intent.RATE_LIMITED: (
        "🛑 *SLOW DOWN*\n\nYou're moving faster than a Springbok! 🇿🇦 Please wait a few seconds before your "
        "next request so I can keep up. ✨"
    ),
}


def canned(text: str) -> MirageHandler:
    async def handle(ctx: MirageContext) -> str | None:
        return text

    return handle


def _welcome_back(name: str) -> str:
    return f"👋Welcome back {name}. Great to see you again, how may i assist?✨"


async def handle_greeting(ctx: MirageContext) -> str | None:
    if ctx.user.preferred_name:
        return _welcome_back(ctx.user.preferred_name)
    return "👋Hi! I'm Mr Everything, your personal assistant. How may i help you today?✨"


async def handle_onboarding(ctx: MirageContext) -> str | None:
    greeting = "👋Hi! I'm Mr Everything, your personal assistant. How may i help you today?✨"
    if ctx.user.preferred_name:
        return greeting
    return f"{greeting}\n\n*What is your name?* (I'd love to know what to call you!)"


async def handle_returning_user(ctx: MirageContext) -> str | None:
    return _welcome_back(ctx.user.preferred_name)


async def handle_mid_conv_resume(ctx: MirageContext) -> str | None:
    topic = ctx.memory.get("last_intent") or "your request"
    return f"🔄 *RESUMING CONVERSATION*\n\nI remember we were talking about {topic}. Should we pick up where we left off? ✨"


async def handle_pricing(ctx: MirageContext) -> str | None:
    item = ctx.extracted_data.get("product") or "items"
    return (
        "💰 *MR EVERYTHING PRICING*\n\nOur concierge fee is typically R49 per order. "
        f"Product prices for {item} are fetched live from top SA retailers like Takealot, Woolworths, "
        "and Checkers Sixty60. ✨"
    )


async def handle_pharmacy(ctx: MirageContext) -> str | None:
    item = ctx.extracted_data.get("product") or "medication"
    return (
        f"💊 *MR EVERYTHING PHARMACY*\n\nSearching Dis-Chem and Clicks for {item}... Please note that "
        "schedule 1+ meds require a valid prescription upload. 📝✨"
    )


async def handle_airtime(ctx: MirageContext) -> str | None:
    amount = ctx.extracted_data.get("quantity") or 50
    network = ctx.extracted_data.get("product") or "Vodacom"
    return (
        f"📱 *MR EVERYTHING AIRTIME*\n\nBuying R{amount} {network} airtime for you. "
        'Confirm by replying "YES AIRTIME". ✨'
    )


async def handle_electricity(ctx: MirageContext) -> str | None:
    amount = ctx.extracted_data.get("quantity") or 100
    return (
        f"⚡ *MR EVERYTHING POWER*\n\nGenerating R{amount} electricity token for meter 142****890. "
        'Confirm by replying "YES POWER". 💡'
    )


async def handle_join_group(ctx: MirageContext) -> str | None:
    code = ctx.extracted_data.get("code")
    if code == "PUBLIC":
        return (
            "🇿🇦 *JOINED PUBLIC GROUP-BUY*\n\nYou're now part of the Mr Everything Public Group-Buy! All items "
            "you add will contribute to a massive bulk order for maximum discounts. 🚀✨"
        )
    if not code:
        return '🤔 I need an invite code to join a private group-buy. Please reply with "JOIN [CODE]". ✨'
    return f"❌ Sorry, I couldn't find a group with code *{code}*. Check the code and try again! 🇿🇦"


async def handle_panic(ctx: MirageContext) -> str | None:
    group = ctx.extracted_data.get("group_id") or "Unknown"
    await ctx.services.alerts.notify_admin(f"🚨 PANIC BUTTON PRESSED by {ctx.user.phone} in Group {group}")
    return (
        "🚨 *MR EVERYTHING EMERGENCY*\n\nI've notified the admin and security services of your location. "
        "Stay calm and stay safe. 🇿🇦✨"
    )


async def handle_did_you_mean(ctx: MirageContext) -> str | None:
    suggestion = ctx.extracted_data.get("suggestion") or "shopping"
    return f"🧐 *DID YOU MEAN?*\n\nI think you're asking about *{suggestion}*. Is that right? ✨"


async def handle_conflicting_intents(ctx: MirageContext) -> str | None:
    primary = ctx.extracted_data.get("primary") or "the first one"
    return (
        "⚖️ *MR EVERYTHING CONFUSION*\n\nYou've asked for a few different things at once! "
        f"Should we start with {primary}? ✨"
    )


async def handle_location_shared(ctx: MirageContext) -> str | None:
    return '📍 *Location saved!*\n\nNow tell me where you\'re going, e.g. "Taxi to Sandton" 🚐'


HANDLERS: dict[Intent, MirageHandler] = {
    Intent.GREETING: handle_greeting,
    Intent.ONBOARDING: handle_onboarding,
    Intent.RETURNING_USER: handle_returning_user,
    Intent.MID_CONV_RESUME: handle_mid_conv_resume,
    Intent.PRICING: handle_pricing,
    Intent.PHARMACY: handle_pharmacy,
    Intent.AIRTIME: handle_airtime,
    Intent.ELECTRICITY: handle_electricity,
    Intent.JOIN_GROUP: handle_join_group,
    Intent.PANIC_BUTTON: handle_panic,
    Intent.DID_YOU_MEAN: handle_did_you_mean,
    Intent.CONFLICTING_INTENTS: handle_conflicting_intents,
    Intent.LOCATION_SHARED: handle_location_shared,
}
