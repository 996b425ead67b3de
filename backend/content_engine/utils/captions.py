"""Burned-in caption files (ASS / SRT) built from word timings."""
from dataclasses import dataclass, replace
from typing import Iterable, List, Optional

from content_engine.adapters.base import WordTiming


@dataclass(frozen=True)
class CaptionStyle:
    """ASS style fields plus how words are grouped on screen."""
    font_name: str = "Arial"
    font_size: int = 18
    primary_color: str = "&H00FFFFFF"
    secondary_color: Optional[str] = None
    outline_color: str = "&H00000000"
    back_color: str = "&H80000000"
    outline: int = 3
    shadow: int = 1
    bold: bool = True
    alignment: int = 2  # bottom center
    margin_v: int = 50
    words_per_line: int = 4
    enabled: bool = True


CAPTION_PRESETS = {
    "animated": CaptionStyle(),
    "bold": CaptionStyle(
        font_name="Impact", font_size=24, primary_color="&H00FFFF00",
        back_color="&H00000000", outline=4, shadow=2, margin_v=40,
    ),
    "minimal": CaptionStyle(
        font_name="Helvetica", font_size=14, back_color="&H00000000",
        outline=1, shadow=0, bold=False, margin_v=60,
    ),
    "karaoke": CaptionStyle(
        font_size=20, primary_color="&H0000FFFF", secondary_color="&H00FFFFFF",
        back_color="&H00000000", outline=2, margin_v=45,
    ),
    "news": CaptionStyle(
        font_name="Roboto", font_size=16, back_color="&HCC000000",
        outline=0, shadow=0, bold=False, margin_v=30,
    ),
}

DEFAULT_PRESET = "animated"

# Options a clip's caption_style may set on top of its preset
STYLE_OVERRIDES = {
    "font_name": str,
    "font_size": int,
    "margin_v": int,
    "words_per_line": int,
    "enabled": bool,
}


def resolve_caption_style(caption_style: Optional[dict]) -> CaptionStyle:
    """
    Merge a clip's caption_style onto its preset.

    `{"preset": "bold", "words_per_line": 3}` starts from the bold preset and
    shows three words at a time. `{"enabled": false}` renders without captions.

    Raises:
        ValueError: Unknown preset or option, or an option of the wrong type
    """
    options = dict(caption_style or {})
    preset = str(options.pop("preset", DEFAULT_PRESET)).lower()
    if preset not in CAPTION_PRESETS:
        raise ValueError(
            f"Unknown caption preset {preset!r}; expected one of {', '.join(CAPTION_PRESETS)}"
        )

    for key, value in options.items():
        kind = STYLE_OVERRIDES.get(key)
        if kind is None:
            raise ValueError(f"Unknown caption option {key!r}")
        if kind is bool:
            valid = isinstance(value, bool)
        elif kind is int:
            valid = isinstance(value, int) and not isinstance(value, bool) and value > 0
        else:
            valid = isinstance(value, str) and bool(value.strip())
        if not valid:
            raise ValueError(f"Invalid value for caption option {key!r}: {value!r}")

    return replace(CAPTION_PRESETS[preset], **options)


def clip_words(words: Iterable[WordTiming], start: float, end: float) -> List[WordTiming]:
    """Words fully inside [start, end], re-timed relative to `start`."""
    return [
        WordTiming(w.word, round(w.start - start, 3), round(w.end - start, 3))
        for w in words
        if w.start >= start and w.end <= end
    ]


def group_words(words: List[WordTiming], words_per_line: int) -> List[WordTiming]:
    """Chunks of consecutive words shown together as one caption."""
    size = max(1, words_per_line)
    groups = []
    for i in range(0, len(words), size):
        chunk = words[i:i + size]
        text = " ".join(w.word.strip() for w in chunk if w.word.strip())
        if text:
            groups.append(WordTiming(text, chunk[0].start, max(chunk[-1].end, chunk[0].start)))
    return groups


def format_ass_time(seconds: float) -> str:
    """h:mm:ss.cc"""
    centis = int(round(max(0.0, seconds) * 100))
    hours, centis = divmod(centis, 360000)
    minutes, centis = divmod(centis, 6000)
    secs, centis = divmod(centis, 100)
    return f"{hours}:{minutes:02d}:{secs:02d}.{centis:02d}"


def format_srt_time(seconds: float) -> str:
    """hh:mm:ss,mmm"""
    millis = int(round(max(0.0, seconds) * 1000))
    hours, millis = divmod(millis, 3600000)
    minutes, millis = divmod(millis, 60000)
    secs, millis = divmod(millis, 1000)
    return f"{hours:02d}:{minutes:02d}:{secs:02d},{millis:03d}"


def _ass_text(text: str) -> str:
    # Braces open override blocks in ASS
    return text.replace("{", "(").replace("}", ")").replace("\n", "\\N")


def build_ass(words: List[WordTiming], style: CaptionStyle, width: int, height: int) -> str:
    """ASS script with one Default style and a dialogue line per word group."""
    lines = [
        "[Script Info]",
        "Title: Clip Captions",
        "ScriptType: v4.00+",
        f"PlayResX: {width}",
        f"PlayResY: {height}",
        "WrapStyle: 0",
        "",
        "[V4+ Styles]",
        "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, "
        "BackColour, Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, "
        "BorderStyle, Outline, Shadow, Alignment, MarginL, MarginR, MarginV, Encoding",
        (
            f"Style: Default,{style.font_name},{style.font_size},{style.primary_color},"
            f"{style.secondary_color or style.primary_color},{style.outline_color},"
            f"{style.back_color},{-1 if style.bold else 0},0,0,0,100,100,0,0,1,"
            f"{style.outline},{style.shadow},{style.alignment},10,10,{style.margin_v},1"
        ),
        "",
        "[Events]",
        "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text",
    ]
    for group in group_words(words, style.words_per_line):
        lines.append(
            f"Dialogue: 0,{format_ass_time(group.start)},{format_ass_time(group.end)},"
            f"Default,,0,0,0,,{_ass_text(group.word)}"
        )
    return "\n".join(lines) + "\n"


def build_srt(words: List[WordTiming], words_per_line: int = 5) -> str:
    blocks = []
    for index, group in enumerate(group_words(words, words_per_line), start=1):
        blocks.append(
            f"{index}\n{format_srt_time(group.start)} --> {format_srt_time(group.end)}\n{group.word}\n"
        )
    return "\n".join(blocks)
