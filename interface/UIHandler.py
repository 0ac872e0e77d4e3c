"""
StyleLab UI
Train a style transfer model from one style image, then test it on your own photos
"""

import time
import logging
from pathlib import Path

import streamlit as st

from core.ImageProcessor import ImageProcessor
from core.ModelTester import ModelTester
from data.DatasetManager import DatasetManager, DatasetSource, DatasetStatus
from training.configuration import (Algorithm, TrainingConfiguration, MIN_ITERATIONS, MAX_ITERATIONS,
                                    MIN_TEXEL_DENSITY, MAX_TEXEL_DENSITY, MIN_STYLE_STRENGTH, MAX_STYLE_STRENGTH)
from training.trainer import StyleTransferTrainer
from utilities.AppPaths import AppPaths
from utilities.ConfigManager import ConfigManager
from utilities.Logger import Logger

logger = Logger.setup_logger(logger_name="ui", log_level=logging.INFO)

POLL_INTERVAL = 1.0
TABS = ["Train", "Test"]


def init_state():
    """Create the long-lived managers once per browser session"""
    if "paths" in st.session_state:
        return

    paths = AppPaths()
    Logger.set_log_file(logger, "ui.log", paths.logs_dir)
    Logger.attach_library_loggers(logger)
    settings = ConfigManager.load_settings(paths.config_file)
    dataset_settings = settings["dataset"]

    st.session_state.paths = paths
    st.session_state.dataset_manager = DatasetManager(
        paths=paths,
        coco_url=dataset_settings["coco_url"],
        image_limit=dataset_settings["image_limit"],
        custom_directory=dataset_settings.get("custom_directory")
    )
    st.session_state.trainer = StyleTransferTrainer(paths=paths)
    st.session_state.tester = ModelTester()
    st.session_state.config = TrainingConfiguration.from_dict(settings["training"])
    st.session_state.style_image = None
    st.session_state.style_upload_count = 0
    st.session_state.active_tab = TABS[0]


def clear_style_image():
    """Drop the style image and give the uploader a fresh key so it forgets the file"""
    st.session_state.style_image = None
    st.session_state.style_upload_count += 1


class StyleLabUI:
    def __init__(self):
        init_state()
        self.paths = st.session_state.paths
        self.datasets = st.session_state.dataset_manager
        self.trainer = st.session_state.trainer
        self.tester = st.session_state.tester

    # Training tab

    def render_dataset_section(self):
        st.subheader("Content Dataset")

        sources = [source.value for source in DatasetSource]
        choice = st.radio("Source", sources, index=sources.index(self.datasets.selected_source.value),
                          horizontal=True)
        self.datasets.select_source(choice)

        if self.datasets.selected_source is DatasetSource.CUSTOM:
            folder = st.text_input("Image folder", value=str(self.datasets.custom_directory or ""))
            if folder and Path(folder).expanduser() != self.datasets.custom_directory:
                self.datasets.set_custom_directory(folder)
                ConfigManager.update_section(self.paths.config_file, "dataset", {"custom_directory": folder})

        state = self.datasets.state
        status_col, action_col = st.columns([3, 1])

        with status_col:
            if state.status is DatasetStatus.NOT_DOWNLOADED:
                st.caption("❌ Not downloaded")
            elif state.status is DatasetStatus.DOWNLOADING:
                if state.progress is None:
                    st.caption("Downloading...")
                else:
                    st.progress(state.progress, text=f"{int(state.progress * 100)}%")
            elif state.status is DatasetStatus.READY:
                st.success(f"{state.image_count} images ready")
            else:
                st.error(state.message)

        with action_col:
            if self.datasets.selected_source is DatasetSource.COCO:
                if state.status is DatasetStatus.NOT_DOWNLOADED:
                    st.button("Download", on_click=self.datasets.start_coco_download)
                elif state.status is DatasetStatus.ERROR:
                    st.button("Retry", on_click=self.datasets.start_coco_download)
                elif state.status is DatasetStatus.DOWNLOADING:
                    st.button("Cancel", key="cancel_download", on_click=self.datasets.cancel_download)

    def render_style_section(self):
        st.subheader("Style Image")

        upload_key = f"style_upload_{st.session_state.style_upload_count}"
        uploaded = st.file_uploader("Drop style image here", type=["png", "jpg", "jpeg"], key=upload_key)
        if uploaded is not None:
            try:
                st.session_state.style_image = ImageProcessor.load_image(uploaded)
            except ValueError as e:
                st.error(f"Could not read style image: {e}")

        if st.session_state.style_image is not None:
            st.image(st.session_state.style_image, use_container_width=True)
            st.button("Clear", on_click=clear_style_image)

    def render_parameters_section(self):
        st.subheader("Training Parameters")
        config = st.session_state.config

        labels = [algorithm.label for algorithm in Algorithm]
        config.algorithm = Algorithm.from_label(
            st.selectbox("Algorithm", labels, index=labels.index(config.algorithm.label))
        )
        config.max_iterations = int(st.number_input(
            "Iterations", min_value=MIN_ITERATIONS, max_value=MAX_ITERATIONS,
            value=config.max_iterations, step=100
        ))
        config.texel_density = TrainingConfiguration.snap_texel_density(st.slider(
            "Detail Level", MIN_TEXEL_DENSITY, MAX_TEXEL_DENSITY,
            TrainingConfiguration.snap_texel_density(config.texel_density), step=4
        ))
        config.style_strength = st.slider(
            "Style Strength", MIN_STYLE_STRENGTH, MAX_STYLE_STRENGTH, config.style_strength, step=1
        )

        for problem in config.validation_errors():
            st.warning(problem)

    def can_start_training(self):
        return (st.session_state.style_image is not None
                and self.datasets.is_ready
                and st.session_state.config.is_valid
                and not self.trainer.is_training)

    def start_training(self):
        config = st.session_state.config
        ConfigManager.update_section(self.paths.config_file, "training", config.to_dict())
        self.trainer.start_training(
            style_image=st.session_state.style_image,
            content_directory=self.datasets.content_directory,
            configuration=config
        )

    def test_trained_model(self):
        self.tester.load_model(self.trainer.trained_model)
        st.session_state.active_tab = "Test"

    def render_training_status(self):
        st.subheader("Training Status")

        if self.trainer.is_training:
            st.progress(self.trainer.progress, text=f"{int(self.trainer.progress * 100)}% complete")
            st.caption(f"Iteration {self.trainer.current_iteration} of {self.trainer.max_iterations}")
            if self.trainer.validation_preview is not None:
                st.image(self.trainer.validation_preview, caption="Validation Preview", width=300)
            st.button("Cancel", key="cancel_training", on_click=self.trainer.cancel_training)

        elif self.trainer.trained_model is not None:
            model_path = self.trainer.trained_model
            st.success("Training Complete!")
            st.caption(model_path.name)
            if self.trainer.validation_preview is not None:
                st.image(self.trainer.validation_preview, caption="Validation Preview", width=300)
            export_col, test_col = st.columns(2)
            with export_col:
                st.download_button("Export Model...", data=model_path.read_bytes(),
                                   file_name=model_path.name, mime="application/octet-stream")
            with test_col:
                st.button("Test Model", type="primary", on_click=self.test_trained_model)

        elif self.trainer.error:
            st.error(f"**Training Failed**\n\n{self.trainer.error}")

        else:
            st.info("Configure training and click Start")

    def render_training_tab(self):
        config_col, status_col = st.columns([1, 2])

        with config_col:
            st.header("Style Transfer Training")
            self.render_dataset_section()
            self.render_style_section()
            self.render_parameters_section()
            st.button("▶ Start Training", type="primary", use_container_width=True,
                      disabled=not self.can_start_training(), on_click=self.start_training)

        with status_col:
            self.render_training_status()

    # Testing tab

    def render_testing_tab(self):
        st.header("Test Trained Model")

        status_col, load_col = st.columns([2, 1])
        with load_col:
            trained = self.paths.list_trained_models()
            if trained:
                names = [path.name for path in trained]
                selected = st.selectbox("Trained models", names)
                if st.button("Load Model"):
                    self.tester.load_model(trained[names.index(selected)])
            uploaded_model = st.file_uploader("Or load a model file", type=["pth", "pt"], key="model_upload")
            if uploaded_model is not None and (self.tester.model_path is None
                                               or uploaded_model.name != self.tester.model_path.name):
                upload_path = self.paths.trained_models_dir / uploaded_model.name
                upload_path.write_bytes(uploaded_model.getvalue())
                self.tester.load_model(upload_path)

        with status_col:
            if self.tester.model_loaded:
                st.success(f"✅ {self.tester.model_name or 'Model loaded'}")
            elif self.tester.is_loading:
                st.caption("Loading model...")
            else:
                st.caption("No model loaded")

        if self.tester.error:
            st.error(self.tester.error)

        input_col, output_col = st.columns(2)
        with input_col:
            st.markdown("**Input**")
            uploaded = st.file_uploader("Drop test image here", type=["png", "jpg", "jpeg"], key="input_upload")
            if uploaded is not None and st.session_state.get("input_name") != uploaded.name:
                try:
                    self.tester.set_input_image(uploaded)
                    st.session_state.input_name = uploaded.name
                except ValueError as e:
                    st.error(f"Could not read image: {e}")
            if self.tester.input_image is not None:
                st.image(self.tester.input_image, use_container_width=True)

        with output_col:
            st.markdown("**Output**")
            if self.tester.output_image is not None:
                st.image(self.tester.output_image, use_container_width=True)
                st.download_button(
                    "Save Output...",
                    data=ImageProcessor.image_bytes(self.tester.output_image, "PNG"),
                    file_name=f"{self.tester.model_name or 'stylized'}_output.png",
                    mime="image/png"
                )

        ready = self.tester.model_loaded and self.tester.input_image is not None
        if st.button("Apply Style", type="primary", disabled=not ready):
            with st.spinner("Processing..."):
                self.tester.process_image()
            st.rerun()

    def run(self):
        st.radio("View", TABS, key="active_tab", horizontal=True, label_visibility="collapsed")

        if st.session_state.active_tab == "Train":
            self.render_training_tab()
        else:
            self.render_testing_tab()

        # Background work publishes into the managers; redraw until it settles
        if self.trainer.is_training or self.datasets.coco_state.status is DatasetStatus.DOWNLOADING:
            time.sleep(POLL_INTERVAL)
            st.rerun()


def main():
    st.set_page_config(page_title="StyleLab - Style Transfer Training", page_icon="🎨", layout="wide")
    StyleLabUI().run()


if __name__ == "__main__":
    main()
