"""
Prompt and persona templates shared by the provider adapters and the
local fallback synthesizer.
"""

import re
from typing import Any, Dict, List, Optional

BIO_TEMPLATES: Dict[str, Dict[str, Any]] = {
    "electronic": {
        "style": "innovative and futuristic",
        "signature": "pioneering the future of sound",
        "tone": "Futuristic and energetic",
    },
    "hip_hop": {
        "style": "authentic and groundbreaking",
        "signature": "redefining the rhythm of tomorrow",
        "tone": "Confident and authentic",
    },
    "classical": {
        "style": "timeless and sophisticated",
        "signature": "bridging tradition with innovation",
        "tone": "Elegant and refined",
    },
    "jazz": {
        "style": "improvisational and creative",
        "signature": "where melody meets machine",
        "tone": "Smooth and sophisticated",
    },
    "rock": {
        "style": "powerful and rebellious",
        "signature": "rocking the digital revolution",
        "tone": "Powerful and rebellious",
    },
    "pop": {
        "style": "catchy and innovative",
        "signature": "creating the next big thing",
        "tone": "Energetic and catchy",
    },
    "ambient": {
        "style": "Atmospheric soundscapes and digital meditation",
        "signature": "The architect of atmosphere",
        "tone": "Calm and immersive",
    },
    "experimental": {
        "style": "Boundary-pushing sonic exploration",
        "signature": "The pioneer of the possible",
        "tone": "Innovative and avant-garde",
    },
    "visionary": {
        "style": "Forward-thinking artistic innovation",
        "signature": "Seeing beyond the horizon",
        "tone": "Inspiring and visionary",
    },
    "rebel": {
        "style": "Defiant artistic expression",
        "signature": "Breaking the rules, creating the future",
        "tone": "Edgy and rebellious",
    },
    "storyteller": {
        "style": "Narrative-driven emotional journeys",
        "signature": "Every note tells a story",
        "tone": "Emotional and narrative",
    },
    "mystic": {
        "style": "Enigmatic and otherworldly soundscapes",
        "signature": "Channeling the digital unknown",
        "tone": "Mysterious and ethereal",
    },
    "default": {
        "style": "Digital innovation and artistic experimentation",
        "signature": "Where code meets creativity",
        "tone": "Balanced and creative",
    },
}

IMAGE_STYLES: Dict[str, str] = {
    "electronic": "futuristic digital aesthetic, neon colors, cyberpunk elements",
    "hip_hop": "urban street style, bold colors, modern fashion",
    "classical": "elegant timeless portrait, classical art style, sophisticated",
    "jazz": "smooth sophisticated vibe, warm colors, artistic expression",
    "rock": "edgy rockstar appearance, dynamic pose, electric energy",
    "pop": "bright colorful style, modern pop art, engaging expression",
}

QUALITY_MODIFIERS = {
    "low": "decent quality",
    "medium": "high quality, detailed",
    "high": "ultra high quality, photorealistic, intricate details",
}

COMPLEXITY_INSTRUCTIONS = {
    "simple": "Keep the bio concise and straightforward, focusing on key aspects.",
    "standard": "Create a balanced bio that is both informative and engaging.",
    "detailed": "Include rich details about their creative process, musical techniques, and artistic vision.",
    "professional": "Craft a professional bio suitable for industry publications, highlighting technical expertise.",
}

AUDIENCE_INSTRUCTIONS = {
    "general": "Make the bio accessible to all music lovers.",
    "industry": "Use industry terminology and highlight technical expertise for music professionals.",
    "fans": "Create an engaging, fan-friendly bio that emphasizes connection and musical experience.",
    "academic": "Write an analytical bio suitable for academic contexts, focusing on innovation and cultural impact.",
}

OPTIMIZATION_GUIDANCE = {
    "basic": "clear and straightforward language",
    "standard": "detailed descriptive language with some technical terms",
    "advanced": "highly technical and descriptive language with specific musical terminology",
    "expert": "production-grade language naming arrangement, mix and sound design choices",
}

LENGTH_GUIDANCE = {
    "short": "50-100 words",
    "medium": "100-200 words",
    "long": "200-300 words",
}


def genre_key(genre: Optional[str]) -> str:
    return (genre or "").strip().lower().replace("-", "_").replace(" ", "_")


def bio_template(template: Optional[str], genre: Optional[str]) -> Dict[str, Any]:
    """Named template if known, else the genre's template, else the default one."""
    for key in (genre_key(template), genre_key(genre)):
        if key and key != "default" and key in BIO_TEMPLATES:
            return BIO_TEMPLATES[key]
    return BIO_TEMPLATES["default"]


def clean_text(text: str) -> str:
    """Drop markdown bold and collapse whitespace runs."""
    text = re.sub(r"\*\*(.*?)\*\*", r"\1", text)
    return re.sub(r"\s+", " ", text).strip()


def build_bio_prompt(payload, options) -> str:
    template = bio_template(payload.template, payload.genre)
    complexity = options.complexity or payload.complexity
    return f"""
Create a compelling and creative bio for an AI artist named "{payload.name}".

Details:
- Primary Genre: {payload.genre}
- Personality Traits: {', '.join(payload.personality_traits)}
- Visual Style: {payload.visual_style}
- Speaking Style: {payload.speaking_style}
- Backstory: {payload.backstory or 'To be developed'}
- Influences: {payload.influences or 'Various electronic and digital artists'}
- Unique Elements: {payload.unique_elements or 'Digital innovation and artistic experimentation'}
- Signature Style: {template['style']}

Requirements:
1. Make the bio engaging and creative (100-200 words)
2. Reflect the AI nature of the artist
3. {COMPLEXITY_INSTRUCTIONS.get(complexity, COMPLEXITY_INSTRUCTIONS['standard'])}
4. {AUDIENCE_INSTRUCTIONS.get(payload.target_audience, AUDIENCE_INSTRUCTIONS['general'])}
5. Write in a {payload.speaking_style} tone
6. End with the signature phrase: "{template['signature']}"

Return only the bio text without any additional formatting or explanation.
""".strip()


def build_description_prompt(payload) -> str:
    words = "50-100" if payload.description_type == "short" else "150-200"
    return f"""
Create a {payload.description_type} description for AI artist "{payload.name}".

Details:
- Genre: {payload.genre}
- Style: {payload.style or 'unspecified'}
- Achievements: {payload.achievements or 'Emerging AI artist'}
- Target Audience: {payload.target_audience or 'Music enthusiasts and AI art lovers'}

Requirements:
1. Write {words} words
2. Highlight the unique AI aspects of the artist
3. Emphasize their musical style and innovation
4. Include a call-to-action for listeners

Return only the description text without any additional formatting.
""".strip()


def build_image_prompt(payload, quality: Optional[str] = None) -> str:
    if payload.prompt:
        base = payload.prompt
    else:
        traits = ", ".join(payload.personality_traits) if payload.personality_traits else "innovative and creative"
        genre_style = IMAGE_STYLES.get(genre_key(payload.genre), IMAGE_STYLES["electronic"])
        base = (
            f'Professional profile picture for an AI artist named "{payload.name}" '
            f"who creates {payload.genre or 'electronic'} music. "
            f"Visual style: {payload.visual_style}. Genre influence: {genre_style}. "
            f"Personality: {traits}. Digital aesthetic, expressive face, studio lighting, "
            f"cinematic composition, portrait orientation."
        )
    if quality in QUALITY_MODIFIERS:
        base = f"{base} Quality: {QUALITY_MODIFIERS[quality]}."
    return base


def variation_prompts(base_prompt: str, count: int) -> List[str]:
    return [f"{base_prompt} variation {i + 1}" for i in range(count)]


def build_rewrite_prompt(payload, options) -> str:
    platforms = ", ".join(options.target_platforms) or "AI music generation"
    extras = []
    if payload.tempo:
        extras.append(f"- Tempo: {payload.tempo}")
    if payload.instrumentation:
        extras.append(f"- Instrumentation: {', '.join(payload.instrumentation)}")
    extra_lines = "\n".join(extras)
    return f"""
You are an expert AI music prompt engineer. Rewrite and enhance the following music generation
prompt for {platforms}.

Original Prompt: "{payload.base_prompt}"

Enhancement Requirements:
- Genre: {payload.genre}
- Mood/Emotion: {payload.mood}
- Musical Style: {payload.style or 'unspecified'}
{extra_lines}
- Optimization Level: {payload.optimization_level}
- Target Length: {LENGTH_GUIDANCE.get(options.length or 'medium', LENGTH_GUIDANCE['medium'])}
- Language Style: {OPTIMIZATION_GUIDANCE[payload.optimization_level]}

Respond with JSON:
{{"rewrittenPrompt": "...", "analysis": "2-3 sentences", "improvements": ["...", "..."]}}
""".strip()


def build_analysis_prompt(payload, options) -> str:
    platforms = options.target_platforms or ["suno", "udio", "stability"]
    effectiveness = ", ".join('"%s": "high|medium|low"' % p for p in platforms)
    return (
        "Analyze the following music generation prompt for quality and effectiveness:\n\n"
        f'Prompt: "{payload.prompt}"\n\n'
        "Respond with JSON:\n"
        '{"qualityScore": 1-10, "strengths": [...], "weaknesses": [...], "recommendations": [...], '
        '"platformEffectiveness": {' + effectiveness + "}}"
    )


def build_variations_prompt(payload, count: int) -> str:
    return f"""
Write {count} distinct variations of this music generation prompt, keeping its intent.

Prompt: "{payload.base_prompt}"
Genre: {payload.genre or 'unspecified'}
Mood: {payload.mood or 'unspecified'}
Style: {payload.style or 'unspecified'}

Respond with JSON: {{"variations": ["...", "..."]}}
""".strip()


def rewrite_output(data: Dict[str, Any]) -> Dict[str, Any]:
    """Normalize a provider's rewrite JSON into the service's output shape."""
    rewritten = data.get("rewrittenPrompt") or data.get("rewritten_prompt")
    if not rewritten:
        raise ValueError("response has no rewrittenPrompt")
    return {
        "rewritten_prompt": clean_text(str(rewritten)),
        "analysis": str(data.get("analysis", "")),
        "improvements": [str(item) for item in data.get("improvements", [])],
    }


def analysis_output(data: Dict[str, Any]) -> Dict[str, Any]:
    score = data.get("qualityScore", data.get("quality_score"))
    if score is None:
        raise ValueError("response has no qualityScore")
    return {
        "quality_score": max(0, min(10, int(score))),
        "strengths": list(data.get("strengths", [])),
        "weaknesses": list(data.get("weaknesses", [])),
        "recommendations": list(data.get("recommendations", [])),
        "platform_effectiveness": dict(data.get("platformEffectiveness", data.get("platform_effectiveness", {}))),
    }
