# config package — authoritative source for narration client configuration.
#
# Sub-modules:
#   api_config.py        — Gemini endpoints, model identifiers, voices, key env vars
#   execution_params.py  — retry budget, rate-limit waits, pacing, audio format
