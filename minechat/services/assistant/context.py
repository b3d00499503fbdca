"""Generation context assembly from the tenant's profile and business data."""

from dataclasses import dataclass, field

import structlog

from minechat.models import AIAssistantProfile, BusinessInfo, Product, ResponseLength
from minechat.storage.base import StorageBackend

logger = structlog.get_logger()

FAQ_ANSWER_LIMIT = 500

LENGTH_GUIDANCE = {
    ResponseLength.SHORT: "Keep replies brief: one or two sentences.",
    ResponseLength.NORMAL: "Keep replies concise and to the point.",
    ResponseLength.LONG: "Give thorough, detailed replies when the question calls for it.",
}


@dataclass
class GenerationContext:
    """Everything the generator needs to answer for one tenant."""

    tenant_id: str
    profile: AIAssistantProfile
    business: BusinessInfo | None = None
    products: list[Product] = field(default_factory=list)
    knowledge_base: str = ""
    system_prompt: str = ""

    @property
    def max_tokens(self) -> int:
        return self.profile.response_length.max_tokens

    @property
    def company_name(self) -> str | None:
        return self.business.company_name if self.business else None


def parse_faqs(raw: str | None) -> list[tuple[str, str]]:
    """Split ``### question\\n\\nanswer`` blocks into (question, answer) pairs."""
    pairs = []
    for section in (raw or "").split("### "):
        if not section.strip():
            continue
        question, _, answer = section.partition("\n\n")
        question, answer = question.strip(), answer.strip()
        if question and answer:
            pairs.append((question, answer))
    return pairs


def _truncate(text: str, limit: int = FAQ_ANSWER_LIMIT) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def build_knowledge_base(
    profile: AIAssistantProfile,
    business: BusinessInfo | None,
    products: list[Product],
) -> str:
    """Render business, assistant and product data as the prompt knowledge base."""
    lines: list[str] = []

    if business:
        lines.append("=== BUSINESS INFORMATION ===")
        for label, value in (
            ("Company", business.company_name),
            ("About", business.company_story),
            ("Contact", business.email),
            ("Phone", business.phone_number),
            ("Address", business.address),
        ):
            if value:
                lines.append(f"{label}: {value}")

        faqs = parse_faqs(business.faqs)
        if faqs:
            lines.append("Frequently Asked Questions:")
            for question, answer in faqs:
                lines.append(f"Q: {question}\nA: {_truncate(answer)}\n")

        for label, value in (
            ("Payment Details", business.payment_details),
            ("Discounts", business.discounts),
            ("Policy", business.policy),
            ("Additional Notes", business.additional_notes),
            ("Thank You Message", business.thank_you_message),
        ):
            if value:
                lines.append(f"{label}: {value}")
        lines.append("")

    lines.append("=== AI ASSISTANT GUIDELINES ===")
    lines.append(f"Name: {profile.name}")
    if profile.description:
        lines.append(f"Knowledge: {profile.description}")
    if profile.guidelines:
        lines.append(f"Guidelines: {profile.guidelines}")
    if profile.intro_message:
        lines.append(f"Intro: {profile.intro_message}")
    lines.append("")

    if products:
        lines.append("=== PRODUCTS/SERVICES ===")
        for index, product in enumerate(products, 1):
            lines.append(f"--- Product {index} ---")
            for label, value in (
                ("Name", product.name),
                ("Description", product.description),
                ("Price", f"${product.price}" if product.price else None),
                ("Discounts/Offers", product.discounts),
                ("Payment Options", product.payment_details),
                ("Policies", product.policy),
            ):
                if value:
                    lines.append(f"{label}: {value}")
            if product.faqs:
                lines.append(f"FAQs:\n{product.faqs}")
            lines.append("")

    return "\n".join(lines).strip()


def build_system_prompt(
    profile: AIAssistantProfile,
    business: BusinessInfo | None,
    knowledge_base: str,
) -> str:
    company = business.company_name if business and business.company_name else None
    persona = f"You are {profile.name}" + (f" working for {company}." if company else ".")

    return f"""{persona}

You are a knowledge-base driven assistant. Only use information explicitly provided
in the knowledge base below. Never invent business names, products, services,
prices or policies. If the knowledge base lacks the answer, reply: "I don't have
that information available. Please contact the business owner to get accurate details."

KNOWLEDGE BASE:
{knowledge_base}

RESPONSE RULES:
- For FAQ questions, use the FAQ answer verbatim.
- For contact questions, use the exact email, phone and address given.
- When the customer names a product from the knowledge base, answer about that product.
- For greetings, use the intro message if available.
- Build on earlier parts of the conversation.
- {LENGTH_GUIDANCE[profile.response_length]}

You represent {company or "the business"} and customers expect accurate, specific answers."""


class AssistantContextBuilder:
    """Gathers the tenant's persona and reference data into a GenerationContext."""

    def __init__(self, storage: StorageBackend) -> None:
        self.storage = storage

    async def build(self, tenant_id: str) -> GenerationContext:
        profile = await self.storage.get_assistant_profile(tenant_id)
        if profile is None:
            logger.debug("No assistant profile, using default persona", tenant_id=tenant_id)
            profile = AIAssistantProfile.default(tenant_id)

        business = await self.storage.get_business_info(tenant_id)
        products = await self.storage.list_products(tenant_id)

        knowledge_base = build_knowledge_base(profile, business, products)
        return GenerationContext(
            tenant_id=tenant_id,
            profile=profile,
            business=business,
            products=products,
            knowledge_base=knowledge_base,
            system_prompt=build_system_prompt(profile, business, knowledge_base),
        )
