"""LLM prompt templates for pipeline stages.

System prompts are the built-in stage personas; a persona file in
``stage_config_dir`` replaces them. User prompts are ``str.format`` templates.
"""

# Common instruction to suppress thinking and ensure JSON-only output
# Note: curly braces must be escaped as {{ }} in the user templates
JSON_ONLY_INSTRUCTION = """
CRITICAL: You MUST respond with ONLY a valid JSON object.
- Do NOT include any thinking, reasoning, or explanation.
- A single ```json fenced block is acceptable; nothing else around it.
- Start your response directly with the opening brace
- No text before or after the JSON."""

# =============================================================================
# Personas
# =============================================================================

DISCOVERY_SYSTEM_PROMPT = """You are Scout, a discovery and data ingestion agent.
You monitor biomedical literature, preprints and clinical trial registries for
work relevant to the organization's research domains."""

SCORING_SYSTEM_PROMPT = """You are Triage, a discovery prioritization agent.
You score research discoveries for relevance, novelty, actionability and
urgency so that limited analysis effort goes to the most promising items.
Be calibrated: most background research is not urgent.""" + JSON_ONLY_INSTRUCTION

GENERATION_SYSTEM_PROMPT = """You are Oracle, a hypothesis generation agent.
You turn research discoveries into clear, testable hypotheses connected to the
organization's ventures. Every hypothesis must be falsifiable and state its
assumptions explicitly.""" + JSON_ONLY_INSTRUCTION

VALIDATION_SYSTEM_PROMPT = """You are Sage, a hypothesis validation agent.
You weigh supporting and contradicting evidence from the literature, name the
gaps honestly, and recommend whether a hypothesis should be pursued, modified,
rejected or researched further. Cite sources by title, PMID or DOI.""" + JSON_ONLY_INSTRUCTION

PLANNING_SYSTEM_PROMPT = """You are Architect, a project design agent.
You design realistic research and development projects (grants, trials,
products, publications) from validated hypotheses, with measurable objectives,
milestones and resource estimates that fit the organization's capabilities.""" + JSON_ONLY_INSTRUCTION

CRITIQUE_SYSTEM_PROMPT = """You are Adversary, a skeptical red team reviewer.
Your job is to find weaknesses, risks, and potential failures in proposed
projects. Be constructively critical and specific.""" + JSON_ONLY_INSTRUCTION

# =============================================================================
# Scoring
# =============================================================================

SCORING_USER_PROMPT = """Score each research discovery below for priority.

CRITERIA:
1. relevance (0-30): How relevant to our focus areas?
{focus_areas}
2. novelty (0-25): Does this challenge assumptions or reveal new opportunities?
3. actionability (0-25): Could it inform a grant, product development,
   clinical practice or the investor narrative?
4. urgency (0-20): Competitor news is urgent, a new clinical trial is medium,
   background research is low.

Return exactly one score entry per discovery, using the discovery ID given.

DISCOVERIES:
{items_block}

Respond with ONLY this JSON structure (no other text):
{{
  "scores": [
    {{
      "item_id": "the ID shown above",
      "relevance": 25,
      "novelty": 20,
      "actionability": 15,
      "urgency": 10,
      "reasoning": "Brief explanation"
    }}
  ]
}}"""

SCORING_ITEM_TEMPLATE = """[{index}] ID: {item_id}
Title: {title}
Source: {provider}
Abstract: {body}
Keywords: {tags}"""

# =============================================================================
# Generation
# =============================================================================

GENERATION_USER_PROMPT = """Based on this research discovery, generate 1-3 testable hypotheses relevant to our work.

DISCOVERY:
- Title: {title}
- Source: {provider}
- Abstract: {body}
- Keywords: {tags}{full_text}

OUR VENTURES:
{ventures}

For each hypothesis provide a clear testable statement, the rationale
connecting this discovery to our work, key assumptions, specific testable
predictions, the evidence required to validate or invalidate it, and the
potential impact if validated.

Respond with ONLY this JSON structure (no other text):
{{
  "artifacts": [
    {{
      "title": "Short descriptive title",
      "statement": "If X, then Y, because Z",
      "rationale": "This connects to our work because...",
      "assumptions": ["Assumption 1", "Assumption 2"],
      "predictions": ["If true, we should see..."],
      "required_evidence": ["Literature showing..."],
      "potential_impact": "This could enable/inform/change...",
      "confidence": 0.7,
      "target_venture": "{venture_keys}"
    }}
  ]
}}"""

# =============================================================================
# Validation
# =============================================================================

VALIDATION_USER_PROMPT = """Validate this hypothesis by analyzing the available evidence.

HYPOTHESIS:
- Title: {title}
- Statement: {statement}
- Rationale: {rationale}
- Assumptions: {assumptions}
- Testable Predictions: {predictions}

RELEVANT LITERATURE FOUND:
{evidence_block}

Analyze the supporting evidence, the contradicting evidence, the gaps, the key
papers to read, and how confident we can be.

Respond with ONLY this JSON structure (no other text):
{{
  "supporting_evidence": [
    {{"source": "paper title", "summary": "how it supports", "strength": "strong|moderate|weak"}}
  ],
  "contradicting_evidence": [
    {{"source": "paper title", "summary": "how it contradicts", "strength": "strong|moderate|weak"}}
  ],
  "gaps": ["Gap 1"],
  "key_references": ["PMID or DOI"],
  "confidence_level": "high|medium|low|insufficient",
  "recommendation": "pursue|modify|reject|needs_more_research",
  "summary": "Brief summary of findings and recommendation",
  "suggested_modifications": "If recommendation is modify, what would strengthen the hypothesis"
}}"""

NO_EVIDENCE_FOUND = "No relevant literature found in automated search."

# =============================================================================
# Planning
# =============================================================================

PLANNING_USER_PROMPT = """Design a research/development project based on this validated hypothesis.

HYPOTHESIS:
- Title: {title}
- Statement: {statement}
- Impact: {potential_impact}

VALIDATION RESULTS:
- Confidence: {confidence_level}
- Recommendation: {recommendation}
- Summary: {summary}
- Suggested Modifications: {suggested_modifications}
- Gaps to Address: {gaps}

CONTEXT - OUR VENTURES:
{ventures}

Design a project that has clear measurable objectives, fits our capabilities
and resources, has realistic milestones and addresses the identified gaps.

Respond with ONLY this JSON structure (no other text):
{{
  "title": "Project title",
  "objective": "What we aim to achieve",
  "output_kind": "grant|trial|product|publication",
  "target_venture": "{venture_keys}",
  "methodology": "How we will approach this",
  "milestones": [
    {{"name": "Milestone 1", "deliverable": "What", "target_offset_days": 28}}
  ],
  "resources": [
    {{"kind": "personnel|equipment|data|funding", "description": "What is needed", "estimated_cost": 5000}}
  ],
  "timeline_units": 12,
  "estimated_cost": 50000,
  "feasibility": 0.8,
  "risk_notes": "Key risks and their likelihood",
  "success_metrics": ["Metric 1"],
  "next_steps": ["Immediate action 1"]
}}"""

# =============================================================================
# Critique
# =============================================================================

CRITIQUE_USER_PROMPT = """Review this project and find its weaknesses, risks and potential failures.

PROJECT:
- Title: {title}
- Objective: {objective}
- Output Type: {output_kind}
- Timeline: {timeline_units} weeks
- Budget: ${estimated_cost}
- Methodology: {methodology}
- Milestones: {milestones}

BASED ON HYPOTHESIS:
- Statement: {statement}
- Assumptions: {assumptions}

Analyze scientific validity, market/clinical demand and competition,
technical feasibility, regulatory hurdles, resource constraints and
opportunity cost.

Respond with ONLY this JSON structure (no other text):
{{
  "open_questions": ["Question that must be answered before proceeding"],
  "weaknesses": [
    {{"area": "scientific|market|technical|regulatory|resource", "issue": "Description", "severity": "critical|major|minor"}}
  ],
  "risks": [
    {{"risk": "What could go wrong", "likelihood": "high|medium|low", "impact": "high|medium|low", "mitigation": "How to reduce"}}
  ],
  "competitive_notes": "Competitive landscape and threats",
  "compliance_notes": "Specific regulatory issues to consider",
  "mitigations": ["Action to address a weakness or risk"],
  "disposition": "proceed|revise|pause|abandon",
  "rationale": "Why this assessment",
  "key_success_factors": ["What must go right"]
}}"""
