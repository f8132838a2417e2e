"""
Local degraded synthesis.

Template output produced without any network access when every provider
has failed. Deterministic: the same payload always yields the same
artifact.
"""

import hashlib
from typing import Any, Dict

from harmony_ai.errors import GenerationFailed
from harmony_ai.providers import templates
from harmony_ai.schemas.generation import GenerationOptions
from harmony_ai.schemas.operations import Operation, PayloadModel

FALLBACK_PROVIDER = "local-template"

GENRE_KEYWORDS = ("rock", "jazz", "electronic", "classical", "hip hop", "pop", "ambient")
MOOD_KEYWORDS = ("happy", "sad", "energetic", "calm", "dark", "uplifting", "melancholic")


def placeholder_image_url(seed_source: str, width: int = 512, height: int = 512) -> str:
    seed = hashlib.sha256(seed_source.encode("utf-8")).hexdigest()[:16]
    return f"https://picsum.photos/seed/{seed}/{width}/{height}"


class FallbackSynthesizer:
    name = FALLBACK_PROVIDER

    def synthesize(self, operation: Operation, payload: PayloadModel, options: GenerationOptions) -> Dict[str, Any]:
        operation = Operation(operation)
        builders = {
            Operation.BIO: self._bio,
            Operation.DESCRIPTION: self._description,
            Operation.IMAGE: self._image,
            Operation.IMAGE_VARIATIONS: self._image_variations,
            Operation.PROMPT_REWRITE: self._prompt_rewrite,
            Operation.PROMPT_ANALYSIS: self._prompt_analysis,
            Operation.PROMPT_VARIATIONS: self._prompt_variations,
        }
        builder = builders.get(operation)
        if builder is None:
            raise GenerationFailed(f"No local template for {operation.value}")
        return builder(payload, options)

    def _bio(self, payload, options) -> Dict[str, Any]:
        template = templates.bio_template(payload.template, payload.genre)
        traits = ", ".join(payload.personality_traits)
        bio = (
            f"{payload.name} is an AI artist who blends {payload.genre} with {payload.visual_style} aesthetics. "
            f"With a {payload.speaking_style} speaking style and {traits} personality traits, "
            f"{payload.name} creates music that pushes the boundaries of digital expression. "
            f"Born from the intersection of technology and creativity, {payload.name} represents "
            f"the future of musical innovation. {template['signature']}."
        )
        return {"bio": bio}

    def _description(self, payload, options) -> Dict[str, Any]:
        base = (
            f"{payload.name} is an innovative AI artist creating {payload.genre} music "
            f"with a unique {payload.style or 'genre-bending'} approach."
        )
        if payload.description_type == "long":
            base = (
                f"{base} Their music blends cutting-edge technology with artistic expression, "
                f"creating sounds that resonate with {payload.target_audience or 'modern music lovers'}. "
                f"Experience the future of music creation with {payload.name}."
            )
        return {"description": base, "description_type": payload.description_type}

    def _image(self, payload, options) -> Dict[str, Any]:
        url = placeholder_image_url(f"{payload.name}-{payload.visual_style}", payload.width, payload.height)
        return {"image_url": url, "prompt": templates.build_image_prompt(payload, options.quality)}

    def _image_variations(self, payload, options) -> Dict[str, Any]:
        return {
            "variations": [
                {"image_url": placeholder_image_url(
                    f"{payload.name}-{payload.visual_style}-{i + 1}", payload.width, payload.height
                )}
                for i in range(options.variation_count)
            ]
        }

    def _prompt_rewrite(self, payload, options) -> Dict[str, Any]:
        style = payload.style or "contemporary"
        rewritten = (
            f"Enhanced {payload.genre} music generation prompt with {payload.mood} mood and {style} style. "
            f"{payload.base_prompt} "
            "Additional details: professional production quality, dynamic range, rich harmonies, "
            "innovative sound design, and engaging musical structure."
        )
        if payload.tempo:
            rewritten += f" Tempo: {payload.tempo}."
        if payload.instrumentation:
            rewritten += f" Instrumentation: {', '.join(payload.instrumentation)}."
        return {
            "rewritten_prompt": rewritten,
            "analysis": "Basic enhancement with genre, mood, and style elements",
            "improvements": [
                "Added genre-specific terminology",
                "Incorporated mood descriptions",
                "Enhanced with production quality details",
            ],
        }

    def _prompt_analysis(self, payload, options) -> Dict[str, Any]:
        return analyze_prompt(payload.prompt, options.target_platforms)

    def _prompt_variations(self, payload, options) -> Dict[str, Any]:
        descriptors = [d for d in (payload.genre, payload.mood, payload.style) if d]
        suffix = f" ({', '.join(descriptors)})" if descriptors else ""
        return {
            "variations": [
                f"{payload.base_prompt}{suffix}, variation {i + 1}" for i in range(options.variation_count)
            ]
        }


def analyze_prompt(prompt: str, platforms=None) -> Dict[str, Any]:
    """Keyword-scored prompt analysis: genre 4, mood 3, length over 50 chars 3."""
    text = prompt.lower()
    has_genre = any(word in text for word in GENRE_KEYWORDS)
    has_mood = any(word in text for word in MOOD_KEYWORDS)
    score = (4 if has_genre else 0) + (3 if has_mood else 0) + (3 if len(prompt) > 50 else 0)

    weaknesses, recommendations = [], []
    if not has_genre:
        weaknesses.append("Lacks genre specification")
        recommendations.append("Specify musical genre")
    if not has_mood:
        weaknesses.append("Missing mood description")
        recommendations.append("Add emotional context")

    rating = "medium" if score > 5 else "low"
    return {
        "quality_score": score,
        "strengths": ["Sufficient length", "Contains descriptive elements"] if len(prompt) > 20 else ["Concise"],
        "weaknesses": weaknesses,
        "recommendations": recommendations,
        "platform_effectiveness": {p: rating for p in (platforms or ["suno", "udio", "stability"])},
    }
