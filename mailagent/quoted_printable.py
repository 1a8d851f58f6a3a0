"""Lenient quoted-printable decoding for decrypted alarm text."""

from __future__ import annotations

_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")


def guess_encoding(charset: str | None) -> str:
    """Map a declared charset name to the codec used for decoding.

    Only the Windows/ISO Latin variants seen in alarm mails are told
    apart; everything else is read as UTF-8.
    """
    if not charset or not charset.strip():
        return "utf-8"
    if "1252" in charset or "8859-1" in charset:
        return "cp1252"
    if "1250" in charset or "8859-2" in charset:
        return "cp1250"
    return "utf-8"


def decode_quoted_printable(text: str, encoding: str = "utf-8") -> str:
    """Decode quoted-printable *text* and read the bytes with *encoding*.

    ``=`` followed by CRLF or LF is a soft line break, ``=XY`` is the byte
    0xXY, and everything else (including a stray ``=``) is taken as is.
    Characters above U+00FF contribute their UTF-8 bytes.
    """
    output = bytearray()
    i = 0
    length = len(text)
    while i < length:
        char = text[i]
        if char == "=":
            if text.startswith("\r\n", i + 1):
                i += 3
                continue
            if text.startswith("\n", i + 1):
                i += 2
                continue
            hex_pair = text[i + 1 : i + 3]
            if len(hex_pair) == 2 and all(c in _HEX_DIGITS for c in hex_pair):
                output.append(int(hex_pair, 16))
                i += 3
                continue
        code = ord(char)
        if code < 0x100:
            output.append(code)
        else:
            output.extend(char.encode("utf-8"))
        i += 1
    return output.decode(encoding, errors="replace")
