"""Canned prompts that seed a conversation about the Pipedrive account."""

from pipedrive_mcp.crm.tools import catalog


@catalog.prompt("list-all-deals", "List all deals in Pipedrive")
def list_all_deals() -> str:
    return "Please list all deals in my Pipedrive account, showing their title, value, status, and stage."


@catalog.prompt("list-all-persons", "List all persons in Pipedrive")
def list_all_persons() -> str:
    return (
        "Please list all persons in my Pipedrive account, "
        "showing their name, email, phone, and organization."
    )


@catalog.prompt("list-all-pipelines", "List all pipelines in Pipedrive")
def list_all_pipelines() -> str:
    return "Please list all pipelines in my Pipedrive account, showing their name and stages."


@catalog.prompt("analyze-deals", "Analyze deals by stage")
def analyze_deals() -> str:
    return (
        "Please analyze the deals in my Pipedrive account, grouping them by stage "
        "and providing total value for each stage."
    )


@catalog.prompt("analyze-contacts", "Analyze contacts by organization")
def analyze_contacts() -> str:
    return (
        "Please analyze the persons in my Pipedrive account, grouping them by organization "
        "and providing a count for each organization."
    )


@catalog.prompt("analyze-leads", "Analyze leads by status")
def analyze_leads() -> str:
    return "Please search for all leads in my Pipedrive account and group them by status."


@catalog.prompt("compare-pipelines", "Compare different pipelines and their stages")
def compare_pipelines() -> str:
    return (
        "Please list all pipelines in my Pipedrive account and compare them "
        "by showing the stages in each pipeline."
    )


@catalog.prompt("find-high-value-deals", "Find high-value deals")
def find_high_value_deals() -> str:
    return (
        "Please identify the highest value deals in my Pipedrive account and provide information "
        "about which stage they're in and which person or organization they're associated with."
    )
