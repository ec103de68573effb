"""Core — models, errors, config, and the plumbing backends share."""
