"""Oracle clients and the pure helpers behind steps and reports.

Modules:
    oracle             - Oracle protocol, OracleError and pacing wrapper
    gemini_oracle      - google-genai implementation of the oracle
    prompt_builder     - full generation prompt assembly
    step_parser        - THOUGHT/TEXT segment parser for step-by-step replies
    evaluation         - evaluator reply parsing and score normalisation
    diff_stats         - word-level diff statistics
    token_usage        - per-step and per-run token accounting
    lexical            - token sets, Jaccard and style signatures
    annotation_matcher - heuristic and judge-based annotation alignment
    highlighter        - cross-variant consistency highlights
    consistency_report - pairwise consistency report and commentary
"""
