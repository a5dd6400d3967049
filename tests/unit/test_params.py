from querypanel.sql.params import convert_named_to_positional, map_generated_params


class TestConvertNamedToPositional:

    def test_numeric_keys_then_named(self):
        assert convert_named_to_positional({"2": "b", "1": "a", "name": "c"}) == ["a", "b", "c"]

    def test_numeric_keys_sort_as_integers(self):
        params = {str(i): i for i in range(1, 12)}
        assert convert_named_to_positional(params) == list(range(1, 12))

    def test_named_keys_sort_lexically(self):
        assert convert_named_to_positional({"b": 2, "a": 1}) == [1, 2]

    def test_placeholder_resolves_and_is_consumed(self):
        params = {"1": "<tenant_id>", "2": 10, "tenant_id": "t-1"}
        assert convert_named_to_positional(params) == ["t-1", 10]

    def test_unresolved_placeholder_is_kept(self):
        assert convert_named_to_positional({"1": "<missing>"}) == ["<missing>"]

    def test_empty(self):
        assert convert_named_to_positional({}) == []
        assert convert_named_to_positional(None) == []


class TestMapGeneratedParams:

    def test_key_precedence(self):
        descriptors = [
            {"name": "limit", "placeholder": "$9", "value": 10},
            {"placeholder": "$2", "value": "x"},
            {"position": 3, "value": "y"},
            {"value": "z"},
        ]
        assert map_generated_params(descriptors) == {"limit": 10, "2": "x", "3": "y", "4": "z"}

    def test_typed_placeholder_keeps_name(self):
        assert map_generated_params([{"placeholder": "{tenant_id:String}", "value": "t"}]) == {"tenant_id": "t"}

    def test_skips_descriptors_without_value(self):
        assert map_generated_params([{"name": "a"}, {"name": "b", "value": None}, {"name": "c", "value": 0}]) == {"c": 0}

    def test_blank_name_falls_through(self):
        assert map_generated_params([{"name": "  ", "value": 1}]) == {"1": 1}

    def test_none(self):
        assert map_generated_params(None) == {}
