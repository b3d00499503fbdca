"""Deterministic replies used when no LLM is available, and product image picking."""

import re

from minechat.core.config import settings
from minechat.models import Attachment, AttachmentType, Product
from minechat.services.assistant.context import GenerationContext, parse_faqs

GREETING = re.compile(r"\b(hello|hi|hey)\b")
DISCOUNT = re.compile(r"\b(discounts?|offers?|deals?)\b")
PRICE = re.compile(r"\b(price|prices|cost|costs)\b|how much")
PRODUCT = re.compile(r"\b(products?|services?|sell|catalog|menu)\b")
CONTACT = re.compile(r"\b(contact|email|phone|call|address|location)\b")
FAQ = re.compile(r"\b(faqs?|questions)\b")
HELP = re.compile(r"\bhelp\b")

SELL_EVERYTHING = (
    "what do you sell",
    "what are your products",
    "show me your products",
)


def _intro(context: GenerationContext) -> str:
    if context.profile.intro_message:
        return context.profile.intro_message
    business_name = context.company_name or "our company"
    return f"Hello! I'm {context.profile.name} for {business_name}."


def _price_list(products: list[Product]) -> str:
    lines = ["Here's our pricing information:", ""]
    for index, product in enumerate(products, 1):
        lines.append(f"{index}. {product.name or 'Product'}")
        if product.price:
            lines.append(f"   Price: ${product.price}")
        if product.description:
            lines.append(f"   {product.description}")
        if product.discounts:
            lines.append(f"   Special Offers: {product.discounts}")
        lines.append("")
    lines.append("Would you like more details about any specific product?")
    return "\n".join(lines)


def _product_list(products: list[Product]) -> str:
    names = [p.name for p in products if p.name]
    return "Here is what we offer: " + ", ".join(names) + ". Would you like details on any of them?"


def _contact_details(context: GenerationContext) -> str | None:
    business = context.business
    if business is None:
        return None
    parts = [
        f"Email: {business.email}" if business.email else None,
        f"Phone: {business.phone_number}" if business.phone_number else None,
        f"Address: {business.address}" if business.address else None,
    ]
    parts = [p for p in parts if p]
    if not parts:
        return None
    return "You can reach us here:\n" + "\n".join(parts)


def fallback_reply(message_text: str, context: GenerationContext) -> str:
    """Keyword-driven reply built only from the tenant's own data."""
    text = message_text.lower()
    business_name = context.company_name or "our company"
    products = context.products

    if GREETING.search(text):
        return f"{_intro(context)} How can I help you today?"

    if DISCOUNT.search(text):
        offers = [p.discounts for p in products if p.discounts]
        if context.business and context.business.discounts:
            offers.insert(0, context.business.discounts)
        if offers:
            return f"Here are our current offers: {offers[0]}"
        return (
            "For information on discounts and current offers, please contact us directly. "
            "Our team can tell you about any available discounts."
        )

    if PRICE.search(text):
        if products:
            return _price_list(products)
        email = context.business.email if context.business and context.business.email else "our sales team"
        return f"I'd be happy to help with pricing. Please contact us at {email} for details."

    if PRODUCT.search(text) and products:
        return _product_list(products)

    if CONTACT.search(text):
        details = _contact_details(context)
        if details:
            return details

    if FAQ.search(text) and context.business:
        faqs = parse_faqs(context.business.faqs)
        if faqs:
            question, answer = faqs[0]
            return f"Here is one of our frequently asked questions:\n{question}\n{answer}"

    if HELP.search(text):
        return (
            f"I can answer questions about {business_name}, our products and prices, "
            "and how to get in touch. What would you like to know?"
        )

    return (
        f"Thank you for your message! I'm here to help with any questions about {business_name}. "
        "How can I assist you?"
    )


def _absolute_url(url: str) -> str:
    if url.startswith(("http://", "https://")):
        return url
    return f"{settings.public_base_url.rstrip('/')}/{url.lstrip('/')}"


def select_product_images(message_text: str, products: list[Product]) -> list[Attachment]:
    """Images of products named in the message, or of every product for catalog requests."""
    text = message_text.lower()

    requested = [p for p in products if p.name and p.name.lower() in text]
    if not requested and (
        any(phrase in text for phrase in SELL_EVERYTHING)
        or ("products" in text and ("all" in text or "everything" in text))
    ):
        requested = products

    return [
        Attachment(type=AttachmentType.IMAGE, url=_absolute_url(url))
        for product in requested
        for url in product.image_urls
        if url
    ]
