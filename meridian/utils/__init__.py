from meridian.utils.json_parser import parse_json_from_llm

__all__ = ["parse_json_from_llm"]
