"""Shared constants for the Craft Arbitrage project."""

from __future__ import annotations

# Base URL of the v2 trading post / crafting API.
API_BASE = "https://api.guildwars2.com/v2"

# The API rejects requests asking for more ids than this.
IDS_PER_REQUEST = 200

# Listing responses are cached upstream for five minutes.
LISTINGS_TTL_SEC = 300

# Community-maintained recipes the API does not list (mystic forge and the like).
CUSTOM_RECIPES_URL = "https://raw.githubusercontent.com/gw2efficiency/custom-recipes/master/recipes.json"

# Trading post: 5% listing fee + 10% exchange fee, both taken from the seller.
DEFAULT_LISTING_FEE_RATE = 0.15

# Items carrying one of these flags can never be listed on the trading post.
RESTRICTED_FLAGS = frozenset({"AccountBound", "SoulbindOnAcquire"})

# Vendor sell price is generally ``vendor_value * 8``.
VENDOR_MARKUP = 8

# Items sold by master craftsmen and other fixed-price vendors.
VENDOR_STANDARD_ITEMS = [
    8576,   # Bottle of Rice Wine
    12136,  # Bag of Flour
    12151,  # Packet of Baking Powder
    12153,  # Packet of Salt
    12155,  # Bag of Sugar
    12156,  # Jug of Water
    12157,  # Jar of Vinegar
    12158,  # Jar of Vegetable Oil
    12271,  # Bottle of Soy Sauce
    12324,  # Bag of Starch
    13006, 13007, 13008, 13009, 13010,  # Runes of Holding
    19704,  # Lump of Tin
    19750,  # Lump of Coal
    19789, 19790, 19791, 19792, 19793, 19794,  # Spools of thread
    19924,  # Lump of Primordium
    70647,  # Crystalline Bottle
    75087,  # Essence of Elegance
    75762,  # Bag of Mortar
    76839,  # Milling Basin
]

# Vendor items whose price does not follow the markup rule (copper per unit).
VENDOR_CUSTOM_PRICES = {
    46747: 150,    # Thermocatalytic Reagent
    91739: 150,    # Pile of Compost Starter
    91702: 200,    # Pile of Powdered Gelatin Mix
    90201: 40000,  # Smell-Enhancing Culture
}

# Outputs that can only be crafted once per day.
TIMEGATED_OUTPUTS = [
    46740,  # Spool of Silk Weaving Thread
    46742,  # Lump of Mithrillium
    46744,  # Glob of Elder Spirit Residue
    46745,  # Spool of Thick Elonian Cord
    66913,  # Clay Pot
    66917,  # Plate of Meaty Plant Food
    66923,  # Plate of Piquant Plant Food
    67015,  # Heat Stone
    67377,  # Vial of Maize Balm
    79726,  # Dragon Hatchling Doll Eye
    79763,  # Gossamer Stuffing
    79790,  # Dragon Hatchling Doll Hide
    79795,  # Dragon Hatchling Doll Adornments
    79817,  # Dragon Hatchling Doll Frame
    43772,  # Charged Quartz Crystal
]

SORT_KEYS = ("profit_total", "profit_per_item", "profit_per_step", "profit_on_cost", "quantity")

__all__ = [
    "API_BASE",
    "IDS_PER_REQUEST",
    "LISTINGS_TTL_SEC",
    "CUSTOM_RECIPES_URL",
    "DEFAULT_LISTING_FEE_RATE",
    "RESTRICTED_FLAGS",
    "VENDOR_MARKUP",
    "VENDOR_STANDARD_ITEMS",
    "VENDOR_CUSTOM_PRICES",
    "TIMEGATED_OUTPUTS",
    "SORT_KEYS",
]
