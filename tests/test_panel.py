"""Tests for the panel records and CSV IO."""

import numpy as np
import pandas as pd
import pytest

from conjoint import (
    AttributeDesign,
    ChoicePanel,
    ChoiceTask,
    Profile,
    read_panel,
    simulate_panel,
    write_panel,
)


def make_task(respondent=1, task=1, chosen=0, n=3):
    profiles = AttributeDesign().profiles()[:n]
    return ChoiceTask(respondent, task, profiles, chosen)


def make_frame():
    """Two tasks, three alternatives each."""
    return pd.DataFrame(
        {
            "resp": [1, 1, 1, 1, 1, 1],
            "task": [1, 1, 1, 2, 2, 2],
            "choice": [0, 1, 0, 1, 0, 0],
            "brand": ["N", "P", "H", "H", "N", "P"],
            "ad": ["Yes", "No", "No", "Yes", "Yes", "No"],
            "price": [8, 12, 16, 20, 24, 28],
        }
    )


class TestAttributeDesign:
    """Test attribute coding."""

    def test_defaults(self):
        design = AttributeDesign()
        assert design.brands == ("N", "P", "H")
        assert design.reference_brand == "H"
        assert design.prices == (8.0, 12.0, 16.0, 20.0, 24.0, 28.0, 32.0)
        assert design.parameter_names == ("brand_N", "brand_P", "ad", "price")
        assert design.num_parameters == 4

    def test_profiles_are_full_cross_product(self):
        profiles = AttributeDesign().profiles()
        assert len(profiles) == 3 * 2 * 7
        assert len(set(profiles)) == len(profiles)

    def test_encode(self):
        design = AttributeDesign()
        np.testing.assert_array_equal(
            design.encode(Profile("N", True, 12.0)), [1.0, 0.0, 1.0, 12.0]
        )
        np.testing.assert_array_equal(
            design.encode(Profile("P", False, 8.0)), [0.0, 1.0, 0.0, 8.0]
        )
        # Reference brand has no dummy
        np.testing.assert_array_equal(
            design.encode(Profile("H", False, 32.0)), [0.0, 0.0, 0.0, 32.0]
        )

    def test_encode_unknown_brand(self):
        with pytest.raises(ValueError, match="Unknown brand"):
            AttributeDesign().encode(Profile("D", True, 8.0))

    def test_encode_non_finite_price(self):
        design = AttributeDesign()
        with pytest.raises(ValueError, match="price must be finite"):
            design.encode(Profile("N", True, float("nan")))
        with pytest.raises(ValueError, match="price must be finite"):
            design.encode(Profile("N", True, float("inf")))

    def test_custom_reference_brand(self):
        design = AttributeDesign(brands=("A", "B", "C"), reference_brand="A")
        assert design.parameter_names == ("brand_B", "brand_C", "ad", "price")

    def test_invalid_designs(self):
        with pytest.raises(ValueError, match=">= 2 levels"):
            AttributeDesign(brands=("N",), reference_brand="N")
        with pytest.raises(ValueError, match="unique"):
            AttributeDesign(brands=("N", "N", "H"))
        with pytest.raises(ValueError, match="reference_brand"):
            AttributeDesign(reference_brand="X")
        with pytest.raises(ValueError, match="prices"):
            AttributeDesign(prices=())


class TestChoiceTask:
    """Test single-task invariants."""

    def test_choices_flags(self):
        task = make_task(chosen=2)
        assert task.choices == (0, 0, 1)
        assert sum(task.choices) == 1
        assert task.chosen_profile == task.profiles[2]
        assert task.num_alternatives == 3

    def test_chosen_out_of_range(self):
        with pytest.raises(ValueError, match="out of range"):
            make_task(chosen=3)
        with pytest.raises(ValueError, match="out of range"):
            make_task(chosen=-1)

    def test_empty_profiles(self):
        with pytest.raises(ValueError, match="no profiles"):
            ChoiceTask(1, 1, (), 0)

    def test_numpy_index_normalized(self):
        task = make_task(chosen=np.int64(1))
        assert type(task.chosen) is int


class TestChoicePanel:
    """Test panel construction and cached arrays."""

    def test_arrays(self):
        panel = ChoicePanel((make_task(1, 1, 0), make_task(1, 2, 2)))
        assert panel.X.shape == (2, 3, 4)
        np.testing.assert_array_equal(panel.chosen, [0, 2])
        assert panel.num_tasks == 2
        assert panel.num_alternatives == 3
        assert panel.num_respondents == 1
        assert len(panel) == 2

    def test_arrays_read_only(self):
        panel = ChoicePanel((make_task(),))
        with pytest.raises(ValueError):
            panel.X[0, 0, 0] = 99.0
        with pytest.raises(ValueError):
            panel.chosen[0] = 1

    def test_mismatched_alternatives(self):
        with pytest.raises(ValueError, match="same number of alternatives"):
            ChoicePanel((make_task(1, 1, n=3), make_task(1, 2, n=2)))

    def test_duplicate_task_keys(self):
        with pytest.raises(ValueError, match="only once"):
            ChoicePanel((make_task(1, 1), make_task(1, 1)))

    def test_empty_panel(self):
        with pytest.raises(ValueError, match="at least one task"):
            ChoicePanel(())

    def test_non_finite_price_in_task(self):
        profiles = (Profile("N", True, 8.0), Profile("P", False, np.inf))
        with pytest.raises(ValueError, match="price must be finite"):
            ChoicePanel((ChoiceTask(1, 1, profiles, 0),))

    def test_unknown_brand_in_task(self):
        profiles = (Profile("N", True, 8.0), Profile("Z", False, 8.0))
        with pytest.raises(ValueError, match="Unknown brand"):
            ChoicePanel((ChoiceTask(1, 1, profiles, 0),))


class TestFrameConversion:
    """Test the long-format table representation."""

    def test_from_frame(self):
        panel = ChoicePanel.from_frame(make_frame())
        assert panel.num_tasks == 2
        np.testing.assert_array_equal(panel.chosen, [1, 0])
        assert panel.tasks[0].profiles[0] == Profile("N", True, 8.0)
        np.testing.assert_array_equal(panel.X[1, 0], [0.0, 0.0, 1.0, 20.0])

    def test_to_frame_schema(self):
        panel = simulate_panel(seed=1, n_respondents=5, n_tasks=4)
        frame = panel.to_frame()
        assert list(frame.columns) == ["resp", "task", "choice", "brand", "ad", "price"]
        assert len(frame) == 5 * 4 * 3
        assert frame.groupby(["resp", "task"])["choice"].sum().eq(1).all()
        assert set(frame["ad"]) <= {"Yes", "No"}

    def test_round_trip(self):
        panel = simulate_panel(seed=3, n_respondents=10, n_tasks=5)
        restored = ChoicePanel.from_frame(panel.to_frame())
        assert restored == panel
        np.testing.assert_array_equal(restored.X, panel.X)

    def test_ad_numeric_flags(self):
        frame = make_frame()
        frame["ad"] = [1, 0, 0, 1, 1, 0]
        panel = ChoicePanel.from_frame(frame)
        assert panel.tasks[0].profiles[0].ad is True
        assert panel.tasks[0].profiles[1].ad is False

    def test_missing_column(self):
        with pytest.raises(ValueError, match="missing columns"):
            ChoicePanel.from_frame(make_frame().drop(columns=["price"]))

    def test_task_with_two_choices(self):
        frame = make_frame()
        frame.loc[0, "choice"] = 1
        with pytest.raises(ValueError, match="exactly one chosen alternative"):
            ChoicePanel.from_frame(frame)

    def test_task_with_no_choice(self):
        frame = make_frame()
        frame.loc[3, "choice"] = 0
        with pytest.raises(ValueError, match="exactly one chosen alternative"):
            ChoicePanel.from_frame(frame)

    def test_non_binary_choice(self):
        frame = make_frame()
        frame.loc[1, "choice"] = 2
        with pytest.raises(ValueError, match="binary"):
            ChoicePanel.from_frame(frame)

    def test_bad_ad_flag(self):
        frame = make_frame()
        frame.loc[2, "ad"] = "Maybe"
        with pytest.raises(ValueError, match="ad flag"):
            ChoicePanel.from_frame(frame)

    def test_unknown_brand(self):
        frame = make_frame()
        frame.loc[2, "brand"] = "D"
        with pytest.raises(ValueError, match="Unknown brand"):
            ChoicePanel.from_frame(frame)

    def test_missing_identifier(self):
        """Rows with a null respondent id are rejected, not dropped."""
        frame = make_frame()
        frame["resp"] = frame["resp"].astype(float)
        frame.loc[0:2, "resp"] = np.nan
        with pytest.raises(ValueError, match=r"missing values in columns: \['resp'\]"):
            ChoicePanel.from_frame(frame)

    def test_missing_task_and_price(self):
        frame = make_frame()
        frame["task"] = frame["task"].astype(float)
        frame["price"] = frame["price"].astype(float)
        frame.loc[4, "task"] = np.nan
        frame.loc[0, "price"] = np.nan
        with pytest.raises(ValueError, match="missing values") as excinfo:
            ChoicePanel.from_frame(frame)
        assert "task" in str(excinfo.value)
        assert "price" in str(excinfo.value)

    def test_infinite_price(self):
        frame = make_frame()
        frame["price"] = frame["price"].astype(float)
        frame.loc[0, "price"] = np.inf
        with pytest.raises(ValueError, match="price must be finite"):
            ChoicePanel.from_frame(frame)

    def test_unequal_task_sizes(self):
        frame = make_frame().drop(index=5)
        with pytest.raises(ValueError, match="same number of alternatives"):
            ChoicePanel.from_frame(frame)


class TestCsvIO:
    """Test reading and writing delimited files."""

    def test_write_then_read(self, tmp_path):
        panel = simulate_panel(seed=11, n_respondents=8, n_tasks=3)
        path = tmp_path / "conjoint.csv"
        write_panel(panel, path)

        restored = read_panel(path)
        assert restored == panel

    def test_read_with_delimiter(self, tmp_path):
        path = tmp_path / "conjoint.tsv"
        make_frame().to_csv(path, sep="\t", index=False)

        panel = read_panel(path, sep="\t")
        assert panel.num_tasks == 2

    def test_read_blank_cells(self, tmp_path):
        path = tmp_path / "damaged.csv"
        path.write_text(
            "resp,task,choice,brand,ad,price\n"
            ",1,1,N,Yes,8\n"
            ",1,0,P,No,12\n"
            "1,2,1,H,No,16\n"
            "1,2,0,N,Yes,20\n"
        )
        with pytest.raises(ValueError, match="missing values"):
            read_panel(path)
