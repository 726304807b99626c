"""
Payment Reference Codec.

Buyers send the payment request id as a 32-byte big-endian uint256 in the
payment calldata; the contract echoes it back as paymentId.
"""

from app.exceptions import PaymentReferenceDecodeError

_REFERENCE_BYTES = 32
_MAX_ID = 2**63 - 1


def encode_payment_reference(payment_request_id: int) -> str:
    """Encode an id as 0x-prefixed 64-hex-digit uint256."""
    if payment_request_id < 0:
        raise ValueError(f"Payment request id cannot be negative: {payment_request_id}")
    return "0x" + payment_request_id.to_bytes(_REFERENCE_BYTES, "big").hex()


def decode_payment_reference(raw: bytes | int | str) -> int:
    """
    Decode a paymentId log field into a payment request id.

    Accepts raw bytes, a hex string, or an already-decoded integer.

    Raises:
        PaymentReferenceDecodeError: the value can never map to a request id
    """
    if isinstance(raw, bool):
        raise PaymentReferenceDecodeError(raw, "boolean is not a reference")

    if isinstance(raw, int):
        value = raw
    elif isinstance(raw, (bytes, bytearray)):
        if not raw:
            raise PaymentReferenceDecodeError(raw, "empty reference")
        if len(raw) > _REFERENCE_BYTES:
            raise PaymentReferenceDecodeError(raw, f"longer than {_REFERENCE_BYTES} bytes")
        value = int.from_bytes(raw, "big")
    elif isinstance(raw, str):
        digits = raw[2:] if raw.lower().startswith("0x") else raw
        if not digits:
            raise PaymentReferenceDecodeError(raw, "empty reference")
        if len(digits) > _REFERENCE_BYTES * 2:
            raise PaymentReferenceDecodeError(raw, f"longer than {_REFERENCE_BYTES} bytes")
        try:
            value = int(digits, 16)
        except ValueError as exc:
            raise PaymentReferenceDecodeError(raw, "not hexadecimal") from exc
    else:
        raise PaymentReferenceDecodeError(raw, f"unsupported type {type(raw).__name__}")

    if value < 0 or value > _MAX_ID:
        raise PaymentReferenceDecodeError(raw, "out of id range")
    return value
