from typing import List, Optional, Sequence

from loguru import logger

from ..exceptions import ValidationError
from ..models import FrameDescription, Frame, KeyMoment, KeywordAnalysis, VisionAnalysisResponse
from ..providers.base import LLMProvider, VisionProvider
from ..utils.validation import parse_structured_response

TRANSCRIPT_SYSTEM_PROMPT = """You are an expert at analyzing video transcripts for a video search system.
Extract comprehensive, searchable information from the transcript.

Provide:
1. A detailed summary (2-4 sentences) of what happens in the video
2. Key topics and themes discussed
3. A comprehensive list of searchable keywords covering:
   - Main topics and subjects
   - People, names, organizations mentioned
   - Technical terms or jargon
   - Actions and activities described
   - Locations mentioned
   - Important concepts

Be thorough - this information will power video search and discovery."""

TRANSCRIPT_USER_PROMPT = """Analyze this video transcript and provide a comprehensive breakdown.

Transcript:
{transcript}

Respond with only a JSON object in this exact format:
{{
  "summary": "Detailed 2-4 sentence summary of the video content",
  "keywords": ["keyword1", "keyword2", "keyword3"],
  "categories": ["category1", "category2"]
}}

Categories should be broad content types like: "tutorial", "interview", "review", "vlog", "educational", "entertainment", "news", etc."""

FRAME_PROMPT = """Describe this video frame{at} in 1-2 sentences. Focus on key visual elements, objects, people, colors, actions, and setting.

Respond with only a JSON object in this exact format:
{{
  "description": "1-2 sentence description",
  "keywords": ["keyword1", "keyword2", "keyword3"]
}}"""

VIDEO_VISION_SYSTEM_PROMPT = """You are an expert at analyzing videos for a video search system.
Your job is to extract comprehensive, searchable information from the entire video.

Provide:
1. A detailed summary (2-4 sentences) of what happens in the video
2. A comprehensive list of searchable keywords covering:
   - People, objects, items visible
   - Colors, visual attributes
   - Actions and activities
   - Settings and locations
   - Any visible text
   - Emotions and tone

Be thorough - this information will power video search and discovery."""

VIDEO_VISION_USER_PROMPT = """Based on these key moments from a video, provide a comprehensive analysis.

Key moments:
{moments}

Respond with only a JSON object in this exact format:
{{
  "summary": "Detailed 2-4 sentence summary of the video",
  "keywords": ["keyword1", "keyword2", "keyword3"],
  "categories": ["category1", "category2"]
}}"""


class TextAnalyzer:
    """Turns text into a summary, keywords and categories through an LLM."""

    def __init__(self, llm: LLMProvider):
        self.llm = llm

    async def analyze(self, transcript: str) -> KeywordAnalysis:
        """
        Analyze a transcript.

        Raises:
            ValidationError: if the transcript is empty
            ParseError: if the model does not answer with the expected JSON object
        """
        if not transcript or not transcript.strip():
            raise ValidationError("Cannot analyze an empty transcript")

        response = await self.llm.chat_completion([
            {"role": "system", "content": TRANSCRIPT_SYSTEM_PROMPT},
            {"role": "user", "content": TRANSCRIPT_USER_PROMPT.format(transcript=transcript)},
        ])
        analysis = parse_structured_response(response.get("content"), KeywordAnalysis)
        logger.info(f"Transcript analysis: {len(analysis.keywords)} keywords, categories={analysis.categories}")
        return analysis

    async def summarize_moments(self, moments: Sequence[KeyMoment]) -> VisionAnalysisResponse:
        """Summarize a sequence of timestamped frame descriptions."""
        if not moments:
            raise ValidationError("No key moments to summarize")

        lines = "\n".join(f"[{m.timestamp:g}s] {m.description}" for m in moments)
        response = await self.llm.chat_completion([
            {"role": "system", "content": VIDEO_VISION_SYSTEM_PROMPT},
            {"role": "user", "content": VIDEO_VISION_USER_PROMPT.format(moments=lines)},
        ])
        analysis = parse_structured_response(response.get("content"), KeywordAnalysis)
        return VisionAnalysisResponse(
            summary=analysis.summary,
            keywords=analysis.keywords,
            categories=analysis.categories,
            key_moments=list(moments),
        )


class VisionDescriber:
    """Describes single frames with a vision model."""

    def __init__(self, vision: VisionProvider):
        self.vision = vision

    async def describe(self, image_data: bytes, timestamp: Optional[float] = None) -> FrameDescription:
        at = f" at {timestamp:g}s" if timestamp is not None else ""
        raw = await self.vision.describe_image(image_data, FRAME_PROMPT.format(at=at))
        return parse_structured_response(raw, FrameDescription)


def select_frames_for_sampling(frames: Sequence[Frame], duration: Optional[float],
                               interval: float) -> List[Frame]:
    """
    Pick the frame closest to each multiple of ``interval`` up to ``duration``.

    A frame closest to several sample points is returned once.
    """
    if interval <= 0:
        raise ValidationError(f"Sampling interval must be positive, got {interval}")
    if not frames:
        return []
    ordered = sorted(frames, key=lambda f: f.timestamp)
    end = duration if duration is not None else ordered[-1].timestamp

    selected: List[Frame] = []
    seen = set()
    step = 0
    while step * interval <= end + 1e-9:
        target = step * interval
        closest = min(ordered, key=lambda f: abs(f.timestamp - target))
        if closest.id not in seen:
            seen.add(closest.id)
            selected.append(closest)
        step += 1
    return selected
