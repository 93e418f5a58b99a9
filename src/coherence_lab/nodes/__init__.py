"""Generation-step graph nodes.

Nodes read their collaborators from ``config["configurable"]["deps"]``
(a StepDependencies instance) so test doubles can be injected per call.
"""

from coherence_lab.nodes.assemble import assemble_node
from coherence_lab.nodes.diff import diff_node
from coherence_lab.nodes.evaluate import evaluate_node
from coherence_lab.nodes.generate import generate_node
from coherence_lab.nodes.prepare import prepare_node

__all__ = [
    "assemble_node",
    "diff_node",
    "evaluate_node",
    "generate_node",
    "prepare_node",
]
