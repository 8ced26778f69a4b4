"""System prompt assembly from live data (time, user, materials catalog)."""

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from urllib.parse import quote
from uuid import UUID
from zoneinfo import ZoneInfo

from studychat.db.models import AppRole, MaterialCategory
from studychat.services.conversation_store import MaterialsCatalog, ProfileDirectory

logger = logging.getLogger(__name__)

MAX_MATERIALS = 100

_FALLBACK_PERSONA = (
    "شما یک دستیار هوشمند دانشگاه پیام نور هستید. "
    "همیشه به زبان فارسی و با لحنی دوستانه، محترمانه و حرفه‌ای پاسخ دهید."
)


def _load_persona() -> str:
    """Load the PERSONA.md file for the system prompt."""
    persona_path = Path(__file__).parent.parent.parent / "PERSONA.md"
    try:
        return persona_path.read_text(encoding="utf-8").strip()
    except FileNotFoundError:
        logger.warning("PERSONA.md not found at %s, using fallback persona", persona_path)
        return _FALLBACK_PERSONA


# Load once at module import
_PERSONA_PROMPT = _load_persona()

_PERSIAN_DIGITS = str.maketrans("0123456789", "۰۱۲۳۴۵۶۷۸۹")

# datetime.weekday(): Monday == 0
_PERSIAN_WEEKDAYS = (
    "دوشنبه",
    "سه‌شنبه",
    "چهارشنبه",
    "پنجشنبه",
    "جمعه",
    "شنبه",
    "یکشنبه",
)

_ROLE_LABELS = {
    AppRole.ADMIN.value: "مدیر سامانه",
    AppRole.USER.value: "دانشجو",
}

_CATEGORY_LABELS = {
    MaterialCategory.BOOK.value: "کتاب",
    MaterialCategory.ARTICLE.value: "مقاله",
    MaterialCategory.EXAM.value: "آزمون",
    MaterialCategory.OTHER.value: "سایر",
}

# Characters that stay literal in a URL handed to the model. Anything else
# (whitespace, parentheses, brackets, angle brackets) is percent-encoded.
_URL_SAFE_CHARS = ":/?#@!$&'*+,;=%~-._"

RAW_LINK_RULES = """قوانین ارائه لینک:
- لینک‌ها را دقیقاً همان‌طور که در فهرست آمده‌اند و به صورت خام (مثل https://...) بنویسید.
- هرگز لینک را در قالب مارک‌داون مانند [عنوان](لینک) یا داخل پرانتز، کروشه یا علامت < > قرار ندهید.
- فقط لینک منابعی را ارائه دهید که در فهرست زیر وجود دارند و هرگز لینک نسازید."""


@dataclass(frozen=True)
class UserContext:
    full_name: str
    role: str | None


@dataclass(frozen=True)
class MaterialReference:
    title: str
    description: str | None
    category: str
    download_url: str


def bare_url(url: str) -> str:
    """Return the URL as a single token that markdown cannot bracket or split."""
    return quote(url.strip(), safe=_URL_SAFE_CHARS)


def format_timestamp(now: datetime) -> str:
    """Human-readable Persian timestamp, e.g. ``دوشنبه ۲۰۲۶/۱۰/۱۹ ساعت ۱۴:۳۰``."""
    weekday = _PERSIAN_WEEKDAYS[now.weekday()]
    stamp = f"{weekday} {now:%Y/%m/%d} ساعت {now:%H:%M}".translate(_PERSIAN_DIGITS)
    zone = now.tzname()
    return f"{stamp} ({zone})" if zone else stamp


def render_system_prompt(
    now: datetime,
    user: UserContext | None,
    materials: list[MaterialReference],
    persona: str = _PERSONA_PROMPT,
) -> str:
    """Compose the system prompt from already-loaded inputs."""
    sections = [persona, f"تاریخ و زمان فعلی: {format_timestamp(now)}"]

    if user is not None:
        lines = ["اطلاعات کاربر:", f"- نام: {user.full_name}"]
        if user.role:
            lines.append(f"- نقش: {_ROLE_LABELS.get(user.role, user.role)}")
        sections.append("\n".join(lines))

    if materials:
        catalog = [RAW_LINK_RULES, "", "فهرست منابع آموزشی قابل دانلود:"]
        for index, material in enumerate(materials, start=1):
            category = _CATEGORY_LABELS.get(material.category, material.category)
            catalog.append(f"{index}. {material.title} (دسته: {category})")
            if material.description:
                catalog.append(f"   توضیحات: {material.description}")
            catalog.append(f"   لینک دانلود: {material.download_url}")
        sections.append("\n".join(catalog))

    return "\n\n".join(sections)


class ContextBuilder:
    """Builds the per-request system prompt."""

    def __init__(
        self,
        profiles: ProfileDirectory,
        catalog: MaterialsCatalog,
        *,
        timezone: str = "Asia/Tehran",
        materials_limit: int = MAX_MATERIALS,
        persona: str | None = None,
    ):
        self.profiles = profiles
        self.catalog = catalog
        self.timezone = ZoneInfo(timezone)
        self.materials_limit = min(materials_limit, MAX_MATERIALS)
        self.persona = persona or _PERSONA_PROMPT

    async def build(self, user_id: UUID | None = None, now: datetime | None = None) -> str:
        """
        Build the system prompt for a request.

        Args:
            user_id: Requesting user; None for anonymous callers
            now: Wall-clock time, defaults to the current time in the display zone

        Returns:
            The system prompt string
        """
        now = now or datetime.now(self.timezone)
        user = await self.load_user(user_id) if user_id else None
        materials = await self.load_materials()
        return render_system_prompt(now, user, materials, persona=self.persona)

    async def load_user(self, user_id: UUID) -> UserContext | None:
        """Profile and role of the user, or None if it cannot be resolved."""
        try:
            profile = await self.profiles.get_profile(user_id)
            if profile is None:
                return None
            role = await self.profiles.get_role(user_id)
        except Exception:
            logger.exception("Profile lookup failed for user %s, skipping personalization", user_id)
            return None
        return UserContext(full_name=profile.full_name or "کاربر", role=role)

    async def load_materials(self) -> list[MaterialReference]:
        """Newest materials with resolved download URLs; empty on failure."""
        try:
            records = await self.catalog.list_materials(self.materials_limit)
            return [
                MaterialReference(
                    title=record.title,
                    description=record.description,
                    category=record.category,
                    download_url=bare_url(self.catalog.resolve_public_url(record.file_path)),
                )
                for record in records[: self.materials_limit]
            ]
        except Exception:
            logger.exception("Materials lookup failed, omitting catalog from context")
            return []
