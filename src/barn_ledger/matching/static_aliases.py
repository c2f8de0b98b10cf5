"""
Compiled-in alias dictionaries.

Keys are raw name variants as they appear on invoices, values are canonical
registry names. They are consulted before learned aliases and can be
replaced through the `matching` section of the config file.
"""

HORSE_ALIASES: dict[str, str] = {
    "valentina": "Numero Valentina",
    "ben 431": "Ben",
    "cooper": "Coopers Hill",
    "ziggy": "Zigarette",
}

PERSON_ALIASES: dict[str, str] = {
    "lucy": "Lucy Davis Kennedy",
    "lucy davis": "Lucy Davis Kennedy",
    "l davis kennedy": "Lucy Davis Kennedy",
    "charlie oakes": "Charlotte Oakes",
    "jo mattila": "Johanna Mattila",
}
