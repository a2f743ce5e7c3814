"""Static data: semantic keyword groups and the default theme taxonomy."""

from __future__ import annotations

# Bump whenever SEMANTIC_GROUPS or keyword matching changes; stored with every run.
SEMANTIC_GROUPS_VERSION = "2024.2"

# Group key -> keywords. Evaluated in this order; the key is looked up in
# category names with underscores read as spaces.
SEMANTIC_GROUPS: dict[str, tuple[str, ...]] = {
    "resilience": ("strength", "overcoming", "perseverance", "survival", "endurance", "recovery", "bounce back"),
    "community": ("support", "togetherness", "collective", "neighborhood", "social", "connection", "belonging"),
    "identity": ("self", "who i am", "personal", "individual", "character", "personality", "authenticity"),
    "healing": ("recovery", "wellness", "therapy", "treatment", "getting better", "health", "restoration"),
    "wisdom": ("learning", "insight", "knowledge", "understanding", "life lessons", "experience"),
    "family": ("relatives", "parents", "children", "siblings", "kinship", "bloodline", "household"),
    "love": ("affection", "care", "romance", "partnership", "devotion", "attachment", "relationships"),
    "hope": ("optimism", "faith", "future", "possibility", "dreams", "aspirations", "belief"),
    "loss": ("grief", "death", "passing", "bereavement", "mourning", "missing", "absence"),
    "change": ("transformation", "transition", "evolution", "growth", "development", "adaptation"),
    "courage": ("bravery", "fearlessness", "boldness", "valor", "heroism", "standing up"),
    "creativity": ("art", "expression", "imagination", "innovation", "artistic", "creative"),
    "justice": ("fairness", "equality", "rights", "advocacy", "activism", "social justice"),
    "environment": ("nature", "climate", "sustainability", "ecology", "conservation", "planet"),
    "violence": ("abuse", "assault", "harm", "aggression", "conflict", "trauma"),
    "poverty": ("financial hardship", "economic struggle", "money problems", "lack of resources"),
    "migration": ("moving", "relocation", "immigration", "displacement", "journey", "new country"),
    "gender": ("masculine", "feminine", "gender identity", "lgbtq", "sexuality"),
    "mental_health": ("depression", "anxiety", "mental illness", "psychological", "emotional wellbeing"),
    "innovation": ("technology", "invention", "breakthrough", "advancement", "progress"),
}

# --- Default taxonomy (written by `theme-balancer seed-taxonomy`) ---
DEFAULT_TAXONOMY_VERSION = "1"

DEFAULT_THEMES = [
    # Core life themes
    {"id": 1, "name": "Resilience", "group": "strength", "description": "Stories of overcoming challenges and bouncing back"},
    {"id": 2, "name": "Community", "group": "social", "description": "Connection, belonging, and collective support"},
    {"id": 3, "name": "Identity", "group": "self", "description": "Self-discovery, cultural identity, and personal growth"},
    {"id": 4, "name": "Healing", "group": "wellbeing", "description": "Recovery, trauma processing, and restoration"},
    {"id": 5, "name": "Wisdom", "group": "growth", "description": "Life lessons, insights, and knowledge sharing"},
    # Emotional themes
    {"id": 6, "name": "Hope", "group": "emotion", "description": "Optimism, future vision, and positive outlook"},
    {"id": 7, "name": "Grief", "group": "emotion", "description": "Loss, mourning, and processing difficult emotions"},
    {"id": 8, "name": "Joy", "group": "emotion", "description": "Happiness, celebration, and positive experiences"},
    {"id": 9, "name": "Fear", "group": "emotion", "description": "Anxiety, worry, and challenging emotions"},
    {"id": 10, "name": "Love", "group": "emotion", "description": "Relationships, care, and deep connections"},
    # Life events
    {"id": 11, "name": "Family", "group": "life_event", "description": "Family relationships, dynamics, and experiences"},
    {"id": 12, "name": "Work", "group": "life_event", "description": "Career, employment, and professional life"},
    {"id": 13, "name": "Health", "group": "life_event", "description": "Physical and mental health experiences"},
    {"id": 14, "name": "Education", "group": "life_event", "description": "Learning, schooling, and knowledge acquisition"},
    {"id": 15, "name": "Migration", "group": "life_event", "description": "Moving, displacement, and new beginnings"},
    # Social issues
    {"id": 16, "name": "Injustice", "group": "social_issue", "description": "Unfairness, discrimination, and systemic issues"},
    {"id": 17, "name": "Poverty", "group": "social_issue", "description": "Economic hardship and financial struggles"},
    {"id": 18, "name": "Violence", "group": "social_issue", "description": "Harm, abuse, and traumatic experiences"},
    {"id": 19, "name": "Equality", "group": "social_issue", "description": "Rights, fairness, and social justice"},
    {"id": 20, "name": "Environment", "group": "social_issue", "description": "Nature, climate, and environmental concerns"},
]

# Record outcome statuses, as written to the run log.
STATUS_ASSIGNED = "assigned"
STATUS_EMPTY = "empty_result"
STATUS_NO_LABELS = "skipped_no_labels"
STATUS_EXISTING = "skipped_existing"
STATUS_FAILED = "failed"

RUN_MODES = ("fresh", "reassign")
