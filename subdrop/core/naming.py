"""Filename and directory heuristics shared by pairing and identification.

All paths use ``/`` separators, the way dropped files are reported.
"""

import re

from subdrop.models.media import MediaKind

VIDEO_EXTENSIONS = (
    ".mp4", ".mkv", ".avi", ".mov", ".webm", ".flv", ".wmv", ".mpeg", ".mpg",
    ".ts", ".m2ts", ".mts", ".f4v", ".ogv", ".ogg", ".amv", ".nsv", ".yuv",
    ".nut", ".nuv", ".wtv", ".tivo", ".ty",
)  # fmt: skip

SUBTITLE_EXTENSIONS = (".srt", ".vtt", ".ass", ".ssa", ".sub", ".txt", ".smi", ".mpl", ".tmp")

# .txt needs content sniffing before it counts as a subtitle
AMBIGUOUS_SUBTITLE_EXTENSIONS = (".txt",)

# Directory names that hold subtitles for the video in their parent directory
SUBTITLE_CONTAINER_NAMES = frozenset(
    {
        "subs", "sub", "subtitles", "subtitle", "captions", "caption",
        "titulky", "subtítulos", "sous-titres", "untertitel", "sottotitoli",
        "legendas", "napisy", "субтитры", "字幕", "자막",
    }
)  # fmt: skip

# Prefixes of directory names skipped when looking for a title directory
SUBTITLE_DIRECTORY_PREFIXES = (
    "subtitles", "captions", "subs", "subtitle", "caption", "sub",
    "titulky", "popisky", "tit",
    "subtítulos", "sous-titres", "légendes", "untertitel", "beschriftungen",
    "sottotitoli", "didascalie", "legendas", "napisy", "napisi",
    "преводи", "натписи", "субтитры", "титры", "субтитри", "титри",
    "subtitrări", "legende", "subtitrari", "titluri", "titrat", "përshkrime",
    "titrai", "antraštės", "titri", "paraksti", "pealkirjad", "subtiitrid",
    "szöveg", "felirat", "ترجمات", "تسميات", "כתוביות", "字幕", "자막",
    "คำบรรยาย", "उपशीर्षक", "कैप्शन", "উপশিরোনাম",
    "subtítols", "llegendes", "subtitraj", "subtitoloj",
    "subtitulaciones", "descripciones", "capcions", "titoli", "tituli", "opisi",
)  # fmt: skip

_LANG_2 = (
    "en|fr|de|es|it|pt|nl|sv|no|da|fi|hu|hr|sr|bg|ro|el|tr|ar|he|hi|th|vi|id|ms|tl|uk|ca|"
    "eu|gl|cy|ga|mt|is|lv|lt|et|sl|mk|sq|bs|me|cs|sk|ru|pl|zh|ja|ko|cz"
)
_LANG_3 = (
    "eng|fre|ger|spa|ita|por|dut|swe|nor|dan|fin|hun|hrv|srp|bul|rum|gre|tur|ara|heb|hin|tha|"
    "vie|ind|may|tgl|ukr|cat|eus|glg|cym|gle|mlt|isl|lav|lit|est|slv|mkd|sqi|bos|mne|ces|slk|"
    "rus|pol|chi|jpn|kor|cze|nob|baq|fil"
)
_LANG_NAMES = (
    "english|french|german|spanish|italian|portuguese|dutch|swedish|norwegian|danish|finnish|"
    "hungarian|croatian|serbian|bulgarian|romanian|greek|turkish|arabic|hebrew|hindi|thai|"
    "vietnamese|indonesian|malay|tagalog|ukrainian|catalan|basque|galician|welsh|irish|maltese|"
    "icelandic|latvian|lithuanian|estonian|slovenian|macedonian|albanian|bosnian|montenegrin|"
    "czech|slovak|russian|polish|chinese|japanese|korean|traditional|simplified"
)

_KEY_EXTENSION_RE = re.compile(r"\.(mkv|mp4|avi|mov|wmv|flv|webm|srt|sub|ass|ssa|vtt)$", re.I)
_KEY_LANGUAGE_RE = re.compile(
    r"\.(en|eng|spanish|french|german|italian|czech|cz|sk|slovak|chinese|japanese|korean|"
    r"russian|ru|pl|polish|de|fr|es|it|pt|nl|sv|no|da|fi|hu|hr|sr|bg|ro|el|tr|ar|he|hi|th|"
    r"vi|id|ms|tl|uk|ca|eu|gl|cy|ga|mt|is|lv|lt|et|sl|mk|sq|bs|me|cs)$",
    re.I,
)
_KEY_QUALITY_RE = re.compile(
    r"\.(720p|1080p|2160p|4k|hd|fhd|uhd|bluray|brrip|dvdrip|webrip|hdtv|web-dl|webdl|ac3|dts|"
    r"aac|mp3|5\.1|7\.1|x264|x265|hevc|h264|h265|xvid|divx)$",
    re.I,
)
_KEY_DISC_RE = re.compile(r"\.(cd1|cd2|disc1|disc2|part1|part2|pt1|pt2)$", re.I)

_LANGUAGE_SUFFIX_RE = re.compile(r"^[a-z]{2,5}(-[a-z]{2})?$", re.I)

_SUBTITLE_EXTENSION_RE = re.compile(
    r"\.(srt|vtt|ass|ssa|sub|idx|sup|sbv|dfxp|ttml|xml|txt|smi)$", re.I
)
_DETECTION_LANGUAGE_RE = re.compile(rf"\.({_LANG_3}|{_LANG_2})$", re.I)

GENERIC_SUBTITLE_PATTERNS = [
    re.compile(rf"^({_LANG_2})$", re.I),
    re.compile(rf"^({_LANG_3})$", re.I),
    re.compile(rf"^({_LANG_NAMES})$", re.I),
    re.compile(
        r"^(chinese.*simplified|chinese.*traditional|simplified.*chinese|traditional.*chinese|"
        r"portuguese.*brazil|portuguese.*portugal|spanish.*spain|spanish.*latin|latin.*american|"
        r"latin.*america|brazilian|european|canadian)$",
        re.I,
    ),
    re.compile(
        r"^(chinese|portuguese|spanish|english|french|german|italian|dutch|norwegian|swedish|"
        r"danish|finnish|polish|russian)\s*\(.*\)$",
        re.I,
    ),
    re.compile(r"^(forced|sdh|hearing|impaired|commentary|director|audio.*description)$", re.I),
    re.compile(r"^(english.*\[.*\]|.*\[.*forced.*\]|.*\[.*sdh.*\]|.*\[.*hi.*\])$", re.I),
    re.compile(r"^(sdh\..+|.+\.hi|.+\.sdh)$", re.I),
    re.compile(rf"^({_LANG_2})\s+({_LANG_NAMES})$", re.I),
    re.compile(r"^(traditional|simplified|brazilian|european|canadian|latin|american|spain|portugal|brazil).*$", re.I),
    re.compile(r"^(subtitle|subtitles|subs)$", re.I),
    re.compile(r"^(en_|eng_|_en|_eng|en-|eng-|-en|-eng).*$", re.I),
]

_QUALITY_TOKEN_RE = re.compile(
    r"\b(480p|576p|720p|1080p|2160p|4k|uhd|hdr|bluray|blu-ray|brrip|bdrip|dvdrip|webrip|"
    r"web-dl|webdl|hdtv|x264|x265|h264|h265|hevc|xvid|aac|ac3|dts|5\.1|7\.1|yts(\.\w+)?)\b",
    re.I,
)
_SRT_TIMELINE_RE = re.compile(r"^\d{2}:\d{2}:\d{2}[,.]\d{3}\s*-->\s*\d{2}:\d{2}:\d{2}[,.]\d{3}")
_VTT_SHORT_TIMELINE_RE = re.compile(r"^\d{2}:\d{2}\.\d{3}\s*-->\s*\d{2}:\d{2}\.\d{3}")


def split_path(full_path: str) -> tuple[str, str]:
    """Split ``a/b/c.mkv`` into (``a/b``, ``c.mkv``)."""
    directory, _, name = full_path.rpartition("/")
    return directory, name


def get_base_name(file_name: str) -> str:
    """File name without its last extension."""
    stem, dot, _ = file_name.rpartition(".")
    return stem if dot else file_name


def classify_media_kind(file_name: str) -> MediaKind | None:
    """Classify by extension. ``.txt`` counts as subtitle pending sniffing."""
    lower = file_name.lower()
    if lower.endswith(VIDEO_EXTENSIONS):
        return MediaKind.VIDEO
    if lower.endswith(SUBTITLE_EXTENSIONS):
        return MediaKind.SUBTITLE
    return None


def needs_content_sniffing(file_name: str) -> bool:
    return file_name.lower().endswith(AMBIGUOUS_SUBTITLE_EXTENSIONS)


def is_language_suffix(token: str) -> bool:
    """True for language-code-like tokens: ``en``, ``eng``, ``pt-br``, ``czech``."""
    return bool(_LANGUAGE_SUFFIX_RE.match(token))


def is_subtitle_container(directory: str) -> bool:
    """True when the last component of ``directory`` is a subtitle folder name."""
    last = directory.rpartition("/")[2]
    return last.lower() in SUBTITLE_CONTAINER_NAMES


def normalize_directory_component(component: str) -> str:
    """Strip brackets, parentheses and quality tokens for loose directory comparison.

    ``Movie (2020) [1080p]`` and ``Movie 2020`` both become ``movie 2020``.
    """
    text = re.sub(r"[\[\]()]", " ", component)
    text = _QUALITY_TOKEN_RE.sub(" ", text)
    text = re.sub(r"[._]+", " ", text)
    return re.sub(r"\s+", " ", text).strip().lower()


def directories_match(first: str, second: str) -> bool:
    """Compare two directories exactly, then component-wise after normalization."""
    if first == second:
        return True
    first_parts = first.split("/")
    second_parts = second.split("/")
    if len(first_parts) != len(second_parts):
        return False
    return all(
        normalize_directory_component(a) == normalize_directory_component(b)
        for a, b in zip(first_parts, second_parts)
    )


def movie_key(full_path: str) -> str:
    """Deduplication key ``<directory>/<normalized base name>``.

    Strips the extension, then trailing language, quality/codec and disc/part
    tokens, so ``Movie.en.srt``, ``Movie.mkv`` and ``Movie.1080p.mkv`` in one
    directory share a key.
    """
    directory, name = split_path(full_path)
    base = _KEY_EXTENSION_RE.sub("", name)
    for pattern in (_KEY_LANGUAGE_RE, _KEY_QUALITY_RE, _KEY_DISC_RE):
        base = pattern.sub("", base)
    return f"{directory}/{base.strip()}"


def extract_directory_name(full_path: str) -> str | None:
    """Clean name of the file's parent directory, used as a fallback query.

    Drops ``[...]`` tags and parentheses that do not hold a 4-digit year.
    Falls back to the raw name when cleaning leaves fewer than 3 characters.
    """
    parts = [p for p in full_path.split("/") if p]
    if len(parts) < 2:
        return None
    directory = parts[-2]
    cleaned = re.sub(r"\[.*?\]", "", directory)
    cleaned = re.sub(r"\((?!\d{4}\))[^)]*\)", "", cleaned)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    if len(cleaned) < 3:
        return directory
    return cleaned


def is_generic_subtitle_name(base_name: str) -> bool:
    return len(base_name) < 4 or any(p.match(base_name) for p in GENERIC_SUBTITLE_PATTERNS)


def subtitle_base_name(file_name: str) -> str:
    """Subtitle name without its extension and trailing language code."""
    base = _SUBTITLE_EXTENSION_RE.sub("", file_name)
    return _DETECTION_LANGUAGE_RE.sub("", base)


def best_detection_name(full_path: str) -> str:
    """Best name to identify a subtitle by.

    Generic names (``en.srt``, ``English.srt``, ``forced.srt``) say nothing
    about the title, so the nearest ancestor directory that is neither very
    short nor a subtitle folder is used instead.
    """
    directory, name = split_path(full_path)
    base = subtitle_base_name(name)

    if not is_generic_subtitle_name(base):
        return base

    parts = directory.split("/") if directory else []
    for part in reversed(parts):
        lower = part.lower()
        if len(part) <= 3 or lower.startswith(SUBTITLE_DIRECTORY_PREFIXES):
            continue
        return part

    longest = max(parts, key=len, default="")
    return longest or base


def looks_like_subtitle(content: str) -> bool:
    """Sniff text content for SRT, WebVTT or ASS/SSA structure."""
    lines = [line.strip() for line in content.splitlines() if line.strip()]
    if len(lines) < 3:
        return False

    if lines[0].startswith("WEBVTT"):
        return True
    if lines[0].startswith("[Script Info]") or any(l.startswith("[V4+ Styles]") for l in lines):
        return True

    sequence_matches = 0
    timeline_matches = 0
    for line in lines[:50]:
        if line.isdigit():
            sequence_matches += 1
        if _SRT_TIMELINE_RE.match(line) or _VTT_SHORT_TIMELINE_RE.match(line):
            timeline_matches += 1

    if sequence_matches >= 2 and timeline_matches >= 2:
        return True
    return timeline_matches >= 3
