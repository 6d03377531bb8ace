"""
Egyptian national ID validation.

Layout (14 digits):
    1      century (2 = 1900s, 3 = 2000s)
    2-7    birth date YYMMDD
    8-9    governorate code
    10-13  sequence (odd = male)
    14     check digit
"""

import re
from datetime import date

GOVERNORATES = {
    "01": "القاهرة",
    "02": "الإسكندرية",
    "03": "بورسعيد",
    "04": "السويس",
    "11": "دمياط",
    "12": "الدقهلية",
    "13": "الشرقية",
    "14": "القليوبية",
    "15": "كفر الشيخ",
    "16": "الغربية",
    "17": "المنوفية",
    "18": "البحيرة",
    "19": "الإسماعيلية",
    "21": "الجيزة",
    "22": "بني سويف",
    "23": "الفيوم",
    "24": "المنيا",
    "25": "أسيوط",
    "26": "سوهاج",
    "27": "قنا",
    "28": "أسوان",
    "29": "الأقصر",
    "31": "البحر الأحمر",
    "32": "الوادي الجديد",
    "33": "مطروح",
    "34": "شمال سيناء",
    "35": "جنوب سيناء",
    "88": "خارج الجمهورية",
}

_DIGITS_RE = re.compile(r"^\d{14}$")


def normalize(national_id) -> str:
    return re.sub(r"[\s-]", "", str(national_id or ""))


def validate_national_id(national_id) -> list[str]:
    """Return a list of problems; empty means the id is structurally valid."""
    clean = normalize(national_id)
    if len(clean) != 14:
        return ["national_id must be exactly 14 digits"]
    if not _DIGITS_RE.match(clean):
        return ["national_id must contain digits only"]

    errors = []
    century = clean[0]
    if century not in ("2", "3"):
        errors.append("invalid century digit")
        return errors

    year = (1900 if century == "2" else 2000) + int(clean[1:3])
    month = int(clean[3:5])
    day = int(clean[5:7])
    try:
        birth = date(year, month, day)
        if birth > date.today():
            errors.append("birth date is in the future")
    except ValueError:
        errors.append("invalid birth date")

    if clean[7:9] not in GOVERNORATES:
        errors.append("invalid governorate code")
    return errors


def parse_national_id(national_id) -> dict | None:
    """Extract birth date, governorate and gender, or None if invalid."""
    if validate_national_id(national_id):
        return None
    clean = normalize(national_id)
    year = (1900 if clean[0] == "2" else 2000) + int(clean[1:3])
    birth = date(year, int(clean[3:5]), int(clean[5:7]))
    return {
        "national_id": clean,
        "birth_date": birth.isoformat(),
        "governorate_code": clean[7:9],
        "governorate": GOVERNORATES[clean[7:9]],
        "gender": "male" if int(clean[9:13]) % 2 == 1 else "female",
    }
