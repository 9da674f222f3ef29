# -*- coding: utf-8 -*-
from langchain_core.prompts import PromptTemplate

analysis_prompt = PromptTemplate.from_template("""
Analyze this business question about the `orders` sales table: "{question}"

Known entities from the question:
- state: {geographic}
- metrics: {metrics}
- dimensions: {dimensions}

Available columns:
- temporal: {temporal_fields}
- categorical: {categorical_fields}
- metrics: {metric_fields}

Instructions: Return a JSON analysis determining the appropriate query and visualization type.
Use only the columns listed above. Aggregation must be SUM.

Example for "top 5 customers in California":
{{
    "analysis": {{
        "type": "ranking",
        "subtype": null,
        "metrics": ["sales"],
        "dimensions": ["customer_name"],
        "filters": {{
            "geographic": "California",
            "temporal": null
        }},
        "limit": 5
    }},
    "query": {{
        "aggregation": "SUM",
        "orderBy": "DESC"
    }},
    "visualization": {{
        "type": "horizontal-bar",
        "config": {{}}
    }}
}}

Return ONLY the JSON object, no explanations or markdown.
""")
