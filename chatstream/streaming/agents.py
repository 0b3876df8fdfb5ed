"""
Agent identifiers of the research pipeline and their display titles.
"""

from __future__ import annotations

from types import MappingProxyType

FINAL_REPORT_AGENT = "report_composer_with_citations"
FINAL_REPORT_LABEL = "Research Report"
INITIAL_AGENT_LABEL = "Initializing..."

SOURCE_COUNTING_AGENTS = frozenset({
    "section_researcher",
    "enhanced_search_executor",
})

AGENT_TITLES = MappingProxyType({
    # Marketing agents
    "main_orchestrator_agent": "🎯 Main Engine",
    "auto_optimization_agent": "⚡ Optimization Engine",
    "campaign_orchestrator_agent": "📊 Campaign Management",
    "analytics_agent": "📈 Analytics Engine",
    "ad_creative_agent": "🎨 Creative Generator",
    "google_ads": "🔍 Google Ads Engine",
    "google ads": "🔍 Google Ads Engine",
    "meta_ads": "📱 Meta Ads Engine",
    "meta ads": "📱 Meta Ads Engine",
    "tiktok_ads": "🎵 TikTok Ads Engine",
    "tiktok ads": "🎵 TikTok Ads Engine",
    "IMAGE_GENERATOR": "🖼️ Image Generator",
    # Research agents
    "plan_generator": "📋 Strategy Planning",
    "section_planner": "📝 Report Structuring",
    "section_researcher": "🔎 Initial Web Research",
    "research_evaluator": "✅ Quality Assessment",
    "EscalationChecker": "🔍 Quality Check",
    "enhanced_search_executor": "🚀 Advanced Web Research",
    "research_pipeline": "⚙️ Research Pipeline",
    "iterative_refinement_loop": "🔄 Refinement",
    "interactive_planner_agent": "💡 Interactive Planning",
    "root_agent": "💡 Interactive Planning",
})


def agent_title(agent: str) -> str:
    """Display title for `agent`; unknown agents get a generic label."""
    if title := AGENT_TITLES.get(agent):
        return title
    return f"✨ Processing ({agent})" if agent else "✨ Processing..."
