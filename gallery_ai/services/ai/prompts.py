"""Prompt builders for photo annotation, search re-ranking and appearance grouping."""
from typing import List, Optional, Sequence

from gallery_ai.schemas.search import SearchCandidate

PHOTO_ANALYSIS_SCHEMA = """{
  "description": "A rich natural language description (2-4 sentences). Describe the scene, who is in it, what they are doing, the setting, and the mood. Write as if narrating the moment for someone searching for it later.",
  "people": [
    {
      "faceId": "face_1",
      "appearance": "Brief physical description (hair color, distinctive features, clothing)",
      "role": "bride|groom|bridesmaid|groomsman|flower_girl|ring_bearer|officiant|parent|child|guest|photographer|dj|musician|null",
      "expression": "smiling|laughing|crying|serious|surprised|neutral|etc",
      "ageRange": "child|teen|young_adult|adult|senior",
      "position": { "x": 0.0, "y": 0.0, "width": 0.0, "height": 0.0 }
    }
  ],
  "activities": ["dancing", "hugging", "toasting", "walking", "posing", "etc"],
  "objects": ["bouquet", "cake", "rings", "champagne glass", "etc"],
  "scene": "ceremony|reception|getting_ready|first_look|portraits|cocktail_hour|dance_floor|outdoor|indoor|church|beach|garden|ballroom|etc",
  "mood": "joyful|romantic|emotional|celebratory|intimate|playful|formal|candid|dramatic|serene",
  "composition": "close_up|medium_shot|wide_shot|detail|aerial|silhouette|group_shot|portrait|candid",
  "tags": ["keyword1", "keyword2", "..."]
}"""

TAG_RULES = """Rules for "tags":
- Include 10-30 searchable keywords
- Include synonyms (e.g., "kids" AND "children", "hug" AND "embrace")
- Include emotional descriptors (e.g., "tearful", "happy", "excited")
- Include setting details (e.g., "outdoor", "sunset", "garden")
- Think about what someone would type to find this photo

Rules for "description":
- Be specific and vivid
- Mention the number of people if relevant
- Mention colors, clothing, and setting details
- Describe interactions between people"""

LLM_FACE_RULES = """Rules for the "people" array:
- Include ALL visible people, even partially visible ones
- Number faces "face_1", "face_2", ... in reading order (top to bottom, left to right)
- For "position", use normalized coordinates (0.0 to 1.0) representing the face bounding box relative to the image dimensions
- Identify roles from attire: white dress/veil = bride, suit with boutonniere = groom, matching dresses = bridesmaids, etc.
- If role cannot be determined, use null"""


def build_photo_analysis_prompt(cv_faces: Sequence[dict]) -> str:
    """
    Build the annotation prompt.

    Args:
        cv_faces: One dict per detected face, in face_id order, with keys
            `face_id`, `position` (normalized x/y/width/height),
            `age_range` and `expression`. Empty when the detector found
            nothing or failed.

    Returns:
        Prompt text
    """
    header = (
        "Analyze this photograph and return a JSON object with the following structure. "
        "Focus on what would make this photo searchable: describe it as if someone is "
        "looking for specific moments, people, or scenes.\n\n"
        "Return ONLY valid JSON, no markdown fencing:\n\n"
    )

    if cv_faces:
        lines: List[str] = []
        for face in cv_faces:
            pos = face["position"]
            lines.append(
                f'- {face["face_id"]}: x={pos["x"]:.3f}, y={pos["y"]:.3f}, '
                f'width={pos["width"]:.3f}, height={pos["height"]:.3f}, '
                f'estimated age: {face["age_range"]}, expression: {face["expression"]}'
            )
        face_rules = (
            f"A face detector already found exactly {len(cv_faces)} face(s) in this photo "
            "(normalized coordinates, origin top-left):\n"
            + "\n".join(lines)
            + "\n\nRules for the \"people\" array:\n"
            "- Return exactly one entry per detected face, using the same faceId values listed above\n"
            "- Copy each face's position unchanged; do NOT move, resize, add or remove boxes\n"
            "- Fill in appearance, role, expression and ageRange for each listed face by looking at that region\n"
            "- Identify roles from attire: white dress/veil = bride, suit with boutonniere = groom, matching dresses = bridesmaids, etc.\n"
            "- If role cannot be determined, use null"
        )
    else:
        face_rules = LLM_FACE_RULES

    return f"{header}{PHOTO_ANALYSIS_SCHEMA}\n\n{face_rules}\n\n{TAG_RULES}\n"


def build_rank_prompt(query: str, candidates: Sequence[SearchCandidate], description_limit: int = 300) -> str:
    """Prompt asking the model to score candidates against a search query."""
    rows = []
    for i, c in enumerate(candidates):
        description = truncate(c.description, description_limit) or "No description"
        tags = ", ".join(c.search_tags[:10])
        rows.append(f"[{i}] Photo {c.photo_id}: {description} (tags: {tags})")

    return (
        f'Given these photo descriptions from a gallery, rank them by relevance to the search query: "{query}"\n\n'
        "Photos:\n"
        + "\n".join(rows)
        + "\n\nReturn ONLY a JSON array (no markdown fencing) of the top results sorted by relevance:\n"
        '[{"index": 0, "relevanceScore": 0.95, "matchReason": "brief reason"}]\n\n'
        "Rules:\n"
        "- relevanceScore: 0.0 to 1.0\n"
        "- Only include photos with relevanceScore > 0.3\n"
        "- matchReason: 1 short sentence explaining why it matches\n"
        "- Return at most 30 results"
    )


def build_appearance_prompt(faces: Sequence[dict]) -> str:
    """
    Prompt asking the model to group face descriptions that show the same person.

    Args:
        faces: One dict per face with keys `photo_id`, `face_id`,
            `appearance`, `age_range`, `expression` and `role`. The list
            position is the index the model answers with.
    """
    rows = [
        f"[{i}] Photo {f['photo_id']}, face {f['face_id']}: {f['appearance']}, "
        f"{f['age_range']}, {f['expression']}, role: {f['role'] or 'unknown'}"
        for i, f in enumerate(faces)
    ]

    return (
        "These are descriptions of people's faces from different photos in the same event gallery. "
        "Group the faces that belong to the SAME person. People may appear in different "
        "expressions or angles but their physical features (hair, build, distinctive features) should match.\n\n"
        "Faces:\n"
        + "\n".join(rows)
        + "\n\nReturn ONLY a JSON array (no markdown fencing) of person groups:\n"
        '[{"personDescription": "Brief canonical description of this person", '
        '"role": "guest|parent|child|bridesmaid|groomsman|etc or null", "faceIndices": [0, 3, 7]}]\n\n'
        "Rules:\n"
        "- Only group faces that are VERY likely the same person\n"
        "- If unsure, keep faces in separate groups\n"
        "- Single appearances (only 1 face) can be omitted from the output"
    )


def truncate(text: Optional[str], limit: int) -> str:
    if not text:
        return ""
    return text if len(text) <= limit else text[:limit - 3] + "..."
