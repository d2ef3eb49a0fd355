import os
import pathlib
import time

from coderabbit_analyzer.analysis_output import AnalysisResult


def analysis_filename(repository: str) -> str:
    return f"{repository.replace('/', '_')}_coderabbit_analysis_{int(time.time() * 1000)}.json"


def save_analysis(result: AnalysisResult, output_dir: str) -> str:
    pathlib.Path(output_dir).mkdir(parents=True, exist_ok=True)
    output_file = os.path.join(output_dir, analysis_filename(result.repository))
    with open(output_file, "w") as f:
        f.write(result.model_dump_json(indent=2))
    return output_file


def load_analysis(analysis_file: str) -> AnalysisResult:
    with open(analysis_file, "r") as f:
        return AnalysisResult.model_validate_json(f.read())
