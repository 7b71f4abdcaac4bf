"""Test doubles shared by the job and app tests."""

from compositor.ai.providers import ImageProvider


class FakeProvider(ImageProvider):
    """Edit/generate provider returning canned PNG results."""

    def __init__(self, name, results, api_key="key"):
        super().__init__(api_key)
        self.name = name
        self.results = results
        self.calls = []
        self.gate = None
        self.error = None

    async def _respond(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return list(self.results)

    async def edit(self, image_png, prompt, width, height):
        self.calls.append(("edit", prompt, width, height))
        return await self._respond()

    async def generate(self, prompt):
        self.calls.append(("generate", prompt, None, None))
        return await self._respond()
