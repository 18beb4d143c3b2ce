import json
import os

from mrp_engine.api.main import app

# Get the OpenAPI schema (note: all REST routes are under /api/v1)
openapi_schema = app.openapi()

# Document the company header that every MRP route requires
openapi_schema.setdefault("info", {})["x-company-header"] = {
    "name": "X-Company-ID",
    "description": "UUID of the company whose data is planned; runs of other companies are not visible.",
}

# Write to file
output_dir = "interfaces"
os.makedirs(output_dir, exist_ok=True)
output_path = os.path.join(output_dir, "openapi.json")

with open(output_path, "w") as f:
    json.dump(openapi_schema, f, indent=2)
