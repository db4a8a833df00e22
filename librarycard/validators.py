import re
from typing import Optional


class ISBNValidator:
    """ISBN-10 / ISBN-13 normalisation and checksum validation."""

    @staticmethod
    def normalize_isbn(raw: Optional[str]) -> str:
        if raw is None:
            return ""
        s = re.sub(r"[^0-9Xx]", "", raw)
        return s.upper()

    @staticmethod
    def is_valid_isbn(isbn: Optional[str]) -> bool:
        if not isbn:
            return False
        s = ISBNValidator.normalize_isbn(isbn)
        if len(s) == 10:
            # ISBN-10: 1..10 ağırlıklı kontrol toplamı, son hane 'X' olabilir
            if not s[:-1].isdigit():
                return False
            total = sum(i * int(ch) for i, ch in enumerate(s[:-1], 1))
            check = s[-1]
            if check == "X":
                check_val = 10
            elif check.isdigit():
                check_val = int(check)
            else:
                return False
            return (total + 10 * check_val) % 11 == 0
        if len(s) == 13 and s.isdigit():
            # ISBN-13 kontrol toplamı
            total = sum((1 if i % 2 == 0 else 3) * int(ch) for i, ch in enumerate(s[:-1]))
            return (10 - (total % 10)) % 10 == int(s[-1])
        return False


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


def is_plausible_email(email: Optional[str]) -> bool:
    """Loose check used before sending mail: something@something."""
    value = normalize_email(email)
    return "@" in value and not value.startswith("@") and not value.endswith("@")
