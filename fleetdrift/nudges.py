import random
from typing import Dict, Optional

MESSAGES = {
    "High Strain": [
        "Hi {name}, we've noticed you've been pushing yourself extra hard lately. Your wellbeing matters to us - perhaps it's time for a well-deserved break?",
        "{name}, you've been working incredibly hard recently. We truly appreciate your dedication, but please remember to take care of yourself too.",
        "Hey {name}, we care about you and want to make sure you're okay. Your recent driving patterns suggest you might need some rest - you've earned it!",
    ],
    "Moderate Strain": [
        "Hello {name}, we've noticed you've been working longer hours lately. Just wanted to check in and remind you that your health and safety come first.",
        "Hi {name}, you're putting in great effort, but we want to make sure you're not overextending yourself. Consider taking some time to recharge.",
        "{name}, we appreciate how hard you've been working. Just a gentle reminder to pace yourself and take breaks when you need them.",
    ],
    "Mild Strain": [
        "Hi {name}, we noticed a slight change in your driving patterns. Nothing concerning, just wanted to remind you that we're here if you need support.",
        "Hello {name}, you're doing great work! Just a friendly check-in to make sure you're feeling good and taking care of yourself.",
        "{name}, keep up the excellent work! We're just dropping by to remind you to listen to your body and take breaks as needed.",
    ],
}

CLOSINGS = [
    " Remember, we're here to support you.",
    " Take care of yourself - you matter to us.",
    " Your wellbeing is important to the whole team.",
    " We're grateful for all you do, and we care about you.",
]

def addressee(first_name: str, driver_name: str) -> str:
    """First name, else the local part of a login-style driver name."""
    return first_name or (driver_name or "").split("@")[0] or "Driver"

def build_nudge_message(
    risk_level: str,
    name: str,
    drift: Dict[str, float],
    volatility_alert: bool = False,
    rng: Optional[random.Random] = None
) -> str:
    """Supportive message for a driver at the given strain level."""
    rng = rng or random.Random()
    templates = MESSAGES.get(risk_level, MESSAGES["Mild Strain"])
    message = rng.choice(templates).format(name=name)

    driving = drift.get("driving_hours_drift", 0)
    night = drift.get("night_hours_drift", 0)
    aggression = drift.get("aggression_drift", 0)

    if risk_level == "High Strain":
        if night > 50:
            message += " We noticed you've been driving more at night recently - please prioritize getting enough rest."
        if aggression > 40 or volatility_alert:
            message += " Your stress levels might be elevated - consider some relaxation techniques or speaking with someone you trust."
        if driving > 50:
            message += " The long hours you've been putting in are noticed and appreciated, but your safety is our top priority."
    elif risk_level == "Moderate Strain":
        if night > 30:
            message += " We see you've been working some late hours - make sure to get quality sleep when you can."
        if driving > 30:
            message += " The extra effort you're putting in doesn't go unnoticed, just remember to balance it with rest."

    return message + rng.choice(CLOSINGS)
