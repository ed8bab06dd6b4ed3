# app/notifications.py

from datetime import datetime
from typing import Optional
from urllib.parse import quote
from zoneinfo import ZoneInfo


def compose_confirmation_message(client_name: str, service_name: str, start_at: datetime,
                                 professional_name: str, tz: Optional[ZoneInfo] = None) -> str:
    local = start_at.astimezone(tz) if tz else start_at
    return (
        f"Hi {client_name}!\n\n"
        f"Confirming your appointment:\n"
        f"Date: {local:%d/%m/%Y}\n"
        f"Time: {local:%H:%M}\n"
        f"Service: {service_name}\n"
        f"Professional: {professional_name}\n\n"
        f"See you soon!"
    )


def whatsapp_link(message: str, phone: Optional[str] = None) -> str:
    # wa.me wants digits only, no "+" or separators
    digits = "".join(ch for ch in (phone or "") if ch.isdigit())
    base = f"https://wa.me/{digits}" if digits else "https://wa.me/"
    return f"{base}?text={quote(message)}"
