"""Preloaded query and results shown before the first search."""

from foldstory.models import InputType, SearchOptions, SearchQuery, SearchResult, SearchType

DEFAULT_QUERY = "Q9FFD0"

_PRELOADED_RAW = [
    {
        "object_id": "V4KUL2",
        "aligned_percentage": 0.985632183908046,
        "rmsd": 1.29,
        "rotation_matrix": [
            [0.426647081, -0.8306958628, -0.3576543747],
            [0.6321548112, -0.0089086134, 0.7747908952],
            [-0.6468017958, -0.5566552075, 0.5213275524],
        ],
        "sequence_aligned_percentage": 0.8880545977011495,
        "tm_score": 0.9661,
        "tm_score_target": 0.958,
        "translation_vector": [-0.024638318, -0.0226368405, -1.659659342],
    },
    {
        "object_id": "A0A4Y7JTS8",
        "aligned_percentage": 0.9660056657223796,
        "rmsd": 1.44,
        "rotation_matrix": [
            [0.9658298829, -0.2312925901, -0.116946035],
            [0.2590206054, 0.8457335761, 0.4665222869],
            [-0.0089979596, -0.4808725985, 0.8767443075],
        ],
        "sequence_aligned_percentage": 0.6346657223796034,
        "tm_score": 0.9436,
        "tm_score_target": 0.9489,
        "translation_vector": [0.8344714242, 0.6237377283, -0.7371404879],
    },
    {
        "object_id": "A0A4Y7II77",
        "aligned_percentage": 0.9716713881019831,
        "rmsd": 1.59,
        "rotation_matrix": [
            [0.4606086358, -0.7333996279, -0.4999646692],
            [0.4077342481, -0.3254990062, 0.8531138141],
            [-0.7884113568, -0.5968043086, 0.1491044927],
        ],
        "sequence_aligned_percentage": 0.6150679886685553,
        "tm_score": 0.9419,
        "tm_score_target": 0.9472,
        "translation_vector": [-0.0703572373, 0.1414858993, -1.3482654364],
    },
    {
        "object_id": "A0A6J0KCR7",
        "aligned_percentage": 0.9626436781609196,
        "rmsd": 1.64,
        "rotation_matrix": [
            [0.1872218835, -0.78337193, -0.5926857394],
            [0.5613011705, -0.4098405677, 0.7190074444],
            [-0.8061569092, -0.4672891272, 0.3629764582],
        ],
        "sequence_aligned_percentage": 0.8817816091954024,
        "tm_score": 0.94,
        "tm_score_target": 0.932,
        "translation_vector": [-0.2529345017, -0.2279681845, -1.723322527],
    },
    {
        "object_id": "A0A6H1ZDF4",
        "aligned_percentage": 0.7578125,
        "rmsd": 5.3,
        "rotation_matrix": [
            [-0.436130258, 0.8968728829, -0.0735488268],
            [0.8946901641, 0.4409307418, 0.0714814044],
            [0.096539672, -0.0346282086, -0.994726585],
        ],
        "sequence_aligned_percentage": 0.05456249999999999,
        "tm_score": 0.4002,
        "tm_score_target": 0.1926,
        "translation_vector": [-0.4424641493, -0.3812200841, 5.4981375511],
    },
]

PRELOADED_RESULTS: tuple[SearchResult, ...] = tuple(
    SearchResult.model_validate(r) for r in _PRELOADED_RAW
)


def default_query(limit: int = 10, superposition: bool = True) -> SearchQuery:
    return SearchQuery(
        input_value=DEFAULT_QUERY,
        input_type=InputType.UNIPROT,
        search_type=SearchType.ALPHAFIND,
        options=SearchOptions(limit=limit, superposition=superposition),
    )
