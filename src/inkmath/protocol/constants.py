# Message type constants (stringly-typed protocol; canonical list lives here)

T_HELLO = "hello"

# client -> server (and broadcast to other clients)
T_STROKE_BEGIN = "stroke_begin"
T_STROKE_PTS = "stroke_pts"
T_STROKE_END = "stroke_end"
T_CLEAR = "clear"

# server -> clients (recognized answers)
T_ANNOTATION = "annotation"
T_ANNOTATION_REMOVED = "annotation_removed"

# Shape types held by a board
SHAPE_DRAW = "draw"
SHAPE_TEXT = "text"
SEGMENT_FREE = "free"

# Meta keys stamped on system-generated shapes
META_AI_GENERATED = "ai_generated"
META_AI_MODE = "ai_mode"
META_AI_TIMESTAMP = "ai_timestamp"
META_LATEX = "latex"
META_EXPRESSION = "expression"
META_SLOT = "slot"

# Backend names
BACKEND_STROKE = "stroke"
BACKEND_VISION = "vision"
