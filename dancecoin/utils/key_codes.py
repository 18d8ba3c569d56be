import secrets

# I, O, 0, 1은 읽기 혼동을 피하기 위해 제외
KEY_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


def generate_key_code(length: int = 12, group: int = 4) -> str:
    """XXXX-XXXX-XXXX 형식의 교환 코드 생성"""
    chars = [secrets.choice(KEY_ALPHABET) for _ in range(length)]
    return "-".join(
        "".join(chars[i : i + group]) for i in range(0, length, group)
    )


def normalize_key_code(code: str) -> str:
    return code.strip().upper()
