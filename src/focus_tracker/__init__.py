"""Focus tracker: records focused-window spans and classifies them with rules."""
