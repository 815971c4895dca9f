"""Static reference data for the assistant.

Everything here is immutable and handed to the orchestrator explicitly
(see ``TenantContext``) rather than read as module state at call time.
"""

from __future__ import annotations

from dataclasses import dataclass
from types import MappingProxyType
from typing import Mapping


@dataclass(frozen=True)
class Product:
    name: str
    description: str
    key: str

    def to_dict(self) -> dict[str, str]:
        return {"name": self.name, "description": self.description, "key": self.key}


PRODUCT_CATALOG: Mapping[str, tuple[Product, ...]] = MappingProxyType({
    "checking_account": (
        Product("Everyday Checking", "A versatile checking account for daily transactions.", "checking_account"),
        Product("Clear Access Banking", "Prevent overspending with balance-based limits.", "checking_account"),
        Product("Student/Teen Banking", "A checking account designed for younger customers.", "checking_account"),
    ),
    "savings_account": (
        Product("Way2Save® Savings", "Build your savings with automatic transfers.", "savings_account"),
        Product("Platinum Savings", "Earn higher interest on your savings.", "savings_account"),
        Product("Certificates of Deposit", "Secure a guaranteed return over a fixed term.", "savings_account"),
    ),
    "credit_card": (
        Product("Cash Back Credit Card", "Earn cash back on everyday purchases.", "credit_card"),
        Product("0% Intro APR Credit Card", "Manage spending with no interest for an introductory period.", "credit_card"),
        Product("Rewards Credit Card", "Earn points or miles for travel and perks.", "credit_card"),
        Product("Balance Transfer Credit Card", "Consolidate debt with a low introductory APR.", "credit_card"),
    ),
    "personal_loan": (
        Product("Personal Loan", "Finance your needs with a fixed-rate loan.", "personal_loan"),
    ),
    "digital_banking": (
        Product("Digital Banking Tools", "Manage your finances with our online and mobile app.", "digital_banking"),
    ),
})

DEFAULT_RECOMMENDATIONS: tuple[Product, ...] = (
    PRODUCT_CATALOG["checking_account"][0],
    PRODUCT_CATALOG["savings_account"][0],
    PRODUCT_CATALOG["digital_banking"][0],
)

APPOINTMENT_REASONS: tuple[str, ...] = (
    "Open a new account",
    "Apply for a credit card",
    "Manage spending and saving",
    "Build credit and reduce debt",
    "Death of a loved one",
    "Questions or assistance with products and services",
    "Save for retirement",
)

BRANCH_LOCATIONS: tuple[str, ...] = ("Brooklyn", "Manhattan", "New York")

BRANCH_LOOKUP_PHRASE = "Find me a branch within 5 miles with 24hrs Drive-thru ATM service"
BRANCH_LOOKUP_RESPONSE = (
    "I found a branch that meets your criteria. It's located at 123 Main St, "
    "Brooklyn, NY 11201. If you would like to navigate there here is the link: "
    "https://goo.gl/maps/12345"
)

DEFAULT_SUGGESTIONS: tuple[str, ...] = (
    "Book an appointment",
    "Find nearest branch",
    "Check my appointments",
)


def recommend_from_categories(categories: list[str], limit: int = 3) -> list[Product]:
    """Map LLM-chosen categories to the first product of each known category."""
    picked: list[Product] = []
    for category in categories:
        products = PRODUCT_CATALOG.get(category)
        if products and products[0] not in picked:
            picked.append(products[0])
    return picked[:limit]


@dataclass(frozen=True)
class TenantContext:
    """The single customer this deployment serves plus its reference data."""

    contact_id: str
    static_username: str
    reasons: tuple[str, ...] = APPOINTMENT_REASONS
    locations: tuple[str, ...] = BRANCH_LOCATIONS
    branch_lookup_phrase: str = BRANCH_LOOKUP_PHRASE
    branch_lookup_response: str = BRANCH_LOOKUP_RESPONSE
