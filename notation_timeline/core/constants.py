"""Global constants for Notation Timeline."""

# Pitch names
PITCH_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]
PITCH_NAMES_FLAT = ["C", "Db", "D", "Eb", "E", "F", "Gb", "G", "Ab", "A", "Bb", "B"]

# Reference pitch
A4_FREQUENCY = 440.0
A4_MIDI = 69

# Musical defaults
DEFAULT_BPM = 120.0
DEFAULT_SECONDS_PER_SUBDIVISION = 60.0 / DEFAULT_BPM
DEFAULT_METER = (4, 4)
DEFAULT_VELOCITY = 80
DEFAULT_BEAT_LENGTH = (1, 4)  # Q: beat unit when the tune gives none

# ABC pitch of "C" (middle C)
MIDDLE_C = 60

# Warp (playback speed percentage)
UNITY_WARP = 100.0

# Tolerances (in subdivisions unless noted)
BOUNDARY_EPSILON = 1e-4
FALLBACK_BOUNDARY_SLACK = 1e-6
TIMING_ORDER_TOLERANCE_MS = 1e-6
CHORD_ALIGNMENT_TOLERANCE = 0.01

# MIDI note and velocity range
MIDI_MIN = 0
MIDI_MAX = 127
