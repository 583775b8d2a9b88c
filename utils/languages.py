ISO_639_1_TO_2T = {
    "en": "eng",
    "fr": "fra",
    "de": "deu",
    "es": "spa",
    "it": "ita",
    "pt": "por",
    "ru": "rus",
    "ja": "jpn",
    "zh": "zho",
    "ko": "kor",
    "ar": "ara",
    "nl": "nld",
    "sv": "swe",
    "pl": "pol",
}


def to_iso639_2t(code: str) -> str:
    """
    Maps a 2-letter code to the 3-letter form ffmpeg writes into containers.
    Unknown and already 3-letter codes pass through lower-cased.
    """
    code = (code or "").strip().lower()
    return ISO_639_1_TO_2T.get(code, code)
