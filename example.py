import asyncio

import stepflow
from stepflow.logging import configure_logging


class ScreenRegionTool(stepflow.ToolBase):
    tool_id = "screen-region-selector"

    def execute(self, input):
        return {"x": 10, "y": 20, "width": 300, "height": 80}


class ScreenshotTool(stepflow.ToolBase):
    tool_id = "screenshot"

    async def execute(self, input):
        await asyncio.sleep(0.05)
        return {"image": "region-{x}-{y}.png".format(**input["region"])}


class OcrTool(stepflow.ToolBase):
    tool_id = "ocr-tesseract"

    def execute(self, input):
        return {"text": f"Hello from {input['image']}", "confidence": 0.93}


class ClickTool(stepflow.ToolBase):
    tool_id = "click"

    def execute(self, input):
        return {"clicked": input["template"].name, "text": input["text"]}


my_workflow = {
    "id": "read-and-click",
    "name": "Read a region and click OK",
    "steps": [
        {
            "id": "region",
            "toolId": "screen-region-selector",
            "inputs": {},
            "cache": {"enabled": True, "persistent": True},
        },
        {"id": "shot", "toolId": "screenshot", "inputs": {"region": {"$ref": "region"}}},
        {"id": "text", "toolId": "ocr-tesseract", "inputs": {"$ref": "{{previous}}"}},
        {
            "id": "click",
            "toolId": "click",
            "inputs": {
                "$merge": [
                    {"template": {"$ref": "{{template:buttons/ok}}"}},
                    {"text": {"$ref": "{{previous:ocr.text}}"}},
                ]
            },
            "onError": "retry",
            "retryCount": 2,
        },
    ],
}


async def main():
    client = stepflow.create(
        stepflow.BackendType.SQLITE,
        tools=[ScreenRegionTool, ScreenshotTool, OcrTool, ClickTool],
        templates=[stepflow.Template(id="tpl-ok", name="ok", category="buttons", data={"image": "ok.png"})],
        db_path="stepflow.db",
    )
    client.on("step-completed", lambda p: print(f"[{p.progress:3d}%] {p.step_id} cached={p.from_cache}"))

    for _ in range(2):
        result = await client.run(my_workflow)
        print(result.to_json())


if __name__ == "__main__":
    configure_logging("INFO")
    asyncio.run(main())
