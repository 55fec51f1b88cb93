"""
Built-in notebook templates.
"""

from typing import Optional

from pydantic import BaseModel, Field

from notebook_session.notebook import Cell, CellType, Notebook


class TemplateCell(BaseModel):
    type: CellType
    content: str


class NotebookTemplate(BaseModel):
    id: str
    name: str
    description: str = ""
    category: str = "general"
    cells: list[TemplateCell] = Field(default_factory=list)

    def instantiate(self) -> Notebook:
        """A new notebook pre-populated with this template's cells, each with a fresh id."""
        notebook = Notebook.new(
            name=self.name,
            description=self.description,
            tags=[self.category],
        )
        for template_cell in self.cells:
            notebook.add_cell(Cell(type=template_cell.type, content=template_cell.content))
        return notebook


TEMPLATES = [
    NotebookTemplate(
        id="blank",
        name="Untitled Notebook",
        description="An empty notebook with a single code cell",
        cells=[TemplateCell(type=CellType.CODE, content="")],
    ),
    NotebookTemplate(
        id="eda",
        name="Exploratory Data Analysis",
        description="Data loading, overview and summary statistics",
        category="data-analysis",
        cells=[
            TemplateCell(
                type=CellType.MARKDOWN,
                content=(
                    "# Exploratory Data Analysis\n\n"
                    "## Steps:\n1. Data Loading\n2. Data Overview\n3. Statistical Analysis"
                ),
            ),
            TemplateCell(
                type=CellType.CODE,
                content=(
                    "import random\n\n"
                    "random.seed(42)\n"
                    "data = [random.gauss(35, 10) for _ in range(1000)]\n"
                    'print(f"Loaded {len(data)} rows")'
                ),
            ),
            TemplateCell(
                type=CellType.CODE,
                content=(
                    "import statistics\n\n"
                    "summary = {\n"
                    '    "mean": statistics.mean(data),\n'
                    '    "stdev": statistics.stdev(data),\n'
                    '    "min": min(data),\n'
                    '    "max": max(data),\n'
                    "}\n"
                    "summary"
                ),
            ),
            TemplateCell(
                type=CellType.MARKDOWN,
                content="## Key Insights\n\n- **Distributions**: Understand the shape of your data",
            ),
        ],
    ),
    NotebookTemplate(
        id="sql-report",
        name="SQL Report",
        description="Query a connection and describe the result",
        category="data-analysis",
        cells=[
            TemplateCell(type=CellType.MARKDOWN, content="# SQL Report"),
            TemplateCell(type=CellType.SQL, content="SELECT * FROM table_name LIMIT 10"),
            TemplateCell(type=CellType.MARKDOWN, content="## Findings\n\nDescribe the result here."),
        ],
    ),
]


def list_templates(category: Optional[str] = None) -> list[NotebookTemplate]:
    if category is None:
        return list(TEMPLATES)
    return [t for t in TEMPLATES if t.category == category]


def get_template(template_id: str) -> Optional[NotebookTemplate]:
    for template in TEMPLATES:
        if template.id == template_id:
            return template
    return None
