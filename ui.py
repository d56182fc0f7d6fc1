import streamlit as st

from config import configure_logging, load_settings
from engine import AppState, WizardSession, fetch_diseases, fetch_solution, load_plant_image, read_aloud_text
from errors import ConfigError, ValidationError
from gateway import AIGateway
from schemas import decode_data_uri
from speech import ElevenLabsSynthesizer, Pyttsx3Synthesizer, SpeechService, TimedAudioPlayer

# Setup UI config first
st.set_page_config(page_title="AgriAid", page_icon="🌱", layout="centered")


class StreamlitAudioPlayer(TimedAudioPlayer):
    """
    Hands ElevenLabs audio to the browser.

    The browser does not report back when the clip ends, so the end is
    derived from the clip length and picked up by `watch_playback`.
    """

    def render(self):
        if self.audio is None:
            return
        try:
            st.audio(self.audio, format=self.mime_type, autoplay=True)
        except Exception as e:
            self.fail(e)


@st.fragment(run_every=1)
def watch_playback(speech):
    """Rerun the page once remote or local speech has finished."""
    speech.player.poll()
    if not speech.is_speaking:
        st.rerun()


# === Shared resources ===
@st.cache_resource
def get_settings():
    settings = load_settings()
    configure_logging(settings.log_level)
    return settings


@st.cache_resource
def get_gateway():
    return AIGateway(get_settings())


def get_session() -> WizardSession:
    if "wizard" not in st.session_state:
        st.session_state["wizard"] = WizardSession()
    return st.session_state["wizard"]


def get_speech(settings, session) -> SpeechService:
    if "speech" not in st.session_state:
        synthesizer = ElevenLabsSynthesizer(
            api_key=settings.elevenlabs_api_key,
            voice_id=settings.elevenlabs_voice_id,
            model_id=settings.elevenlabs_model_id,
            timeout=settings.elevenlabs_timeout,
        )
        service = SpeechService(synthesizer, player=StreamlitAudioPlayer(), fallback=Pyttsx3Synthesizer())
        session.on_reset(service.stop)
        st.session_state["speech"] = service
    return st.session_state["speech"]


def start_over(session):
    session.reset()
    st.rerun()


# === Layout pieces ===
def render_header():
    st.markdown("<h1 style='text-align:center;'>🌱 AgriAid</h1>", unsafe_allow_html=True)
    st.markdown(
        "<p style='text-align:center;color:#64748b;'>Your AI-powered partner in crop health.</p>",
        unsafe_allow_html=True,
    )


def render_error_banner(session):
    if not session.error:
        return
    st.error(f"**An Error Occurred**\n\n{session.error}")
    dismiss_col, reset_col = st.columns(2)
    if dismiss_col.button("Dismiss", key="dismiss_error", use_container_width=True):
        session.dismiss_error()
        st.rerun()
    if session.state is not AppState.USER_INPUT:
        if reset_col.button("Start Over", key="error_start_over", use_container_width=True):
            start_over(session)


def render_footer():
    st.markdown("---")
    st.caption("Powered by Gemini AI. For informational purposes only.")


# === Step 1: user input ===
def render_user_input(session):
    st.subheader("Welcome, Farmer!")
    st.write("Let's analyze your crop's health. Please provide some details below.")

    use_camera = st.toggle("📷 Take a photo instead of uploading", key="use_camera")
    with st.form("user_input_form"):
        crop = st.text_input("What crop did you plant?", placeholder="e.g., Tomato, Corn, Wheat")
        days_planted = st.number_input(
            "How many days ago was it planted?", min_value=1, step=1, value=None, placeholder="e.g., 30"
        )
        if use_camera:
            photo = st.camera_input("Photo of Your Plant (Optional)")
        else:
            photo = st.file_uploader("Photo of Your Plant (Optional)", type=["png", "jpg", "jpeg", "webp"])
        submitted = st.form_submit_button("Analyze Crop Health", use_container_width=True)

    if not submitted:
        return
    try:
        plant_image = load_plant_image(photo.getvalue(), photo.type) if photo is not None else None
        session.start(crop, days_planted, plant_image)
    except ValidationError as e:
        session.error = str(e)
    st.rerun()


# === Step 2: disease selection ===
def draw_disease_grid(target, session, interactive):
    with target.container():
        columns = st.columns(3)
        for index, disease in enumerate(session.diseases):
            with columns[index % 3]:
                with st.container(border=True):
                    if disease.image_url:
                        image_bytes, _ = decode_data_uri(disease.image_url)
                        st.image(image_bytes, caption=f"Visualization of {disease.name}", use_container_width=True)
                    elif session.is_loading:
                        st.markdown("🖼️ *Generating image...*")
                    else:
                        st.markdown("🚫 *Image unavailable*")
                    st.markdown(f"**{disease.name}**")
                    st.caption(disease.description)
                    if interactive and st.button(
                        "Select",
                        key=f"select_{index}",
                        disabled=not disease.is_selectable,
                        use_container_width=True,
                    ):
                        if session.select(disease):
                            st.rerun()


def render_disease_selection(session, gateway):
    back_col, title_col = st.columns([1, 5])
    if back_col.button("← Back", key="back_to_input"):
        start_over(session)
    title_col.subheader("Potential Diseases")
    st.write("Select the image that most closely matches your plant's symptoms.")

    status = st.empty()
    grid = st.empty()

    if session.needs_diseases():
        def show_progress(s):
            status.info(f"⏳ {s.loading_message}")
            draw_disease_grid(grid, s, interactive=False)

        for _ in fetch_diseases(session, gateway, on_progress=show_progress):
            draw_disease_grid(grid, session, interactive=False)
        status.empty()
        st.rerun()

    draw_disease_grid(grid, session, interactive=True)


# === Step 3: solution ===
def render_solution_card(title, icon, items):
    with st.container(border=True):
        st.markdown(f"#### {icon} {title}")
        st.markdown("\n".join(f"- {item}" for item in items))


def render_solution(session, gateway, speech):
    disease = session.selected_disease
    back_col, title_col = st.columns([1, 5])
    if back_col.button("← Start Over", key="solution_start_over"):
        start_over(session)
    title_col.subheader(f"Action Plan for {disease.name}")

    if session.needs_solution():
        with st.spinner("Generating Action Plan... Crafting a detailed solution for you."):
            fetch_solution(session, gateway)
        if session.error:
            st.rerun()

    solution = session.solution
    if solution is not None:
        image_col, plan_col = st.columns([1, 2])
        with image_col:
            if disease.image_url:
                image_bytes, _ = decode_data_uri(disease.image_url)
                st.image(image_bytes, use_container_width=True)
            st.markdown(f"*{disease.description}*")
            if speech.is_supported:
                label = "🔇 Stop Reading" if speech.is_speaking else "🔊 Read Aloud"
                if st.button(label, key="toggle_speech", use_container_width=True):
                    if speech.is_speaking:
                        speech.stop()
                    else:
                        speech.speak(read_aloud_text(disease, solution))
                    st.rerun()
                speech.player.render()
                if speech.is_speaking:
                    watch_playback(speech)
        with plan_col:
            render_solution_card("Immediate Actions", "🚨", solution.immediate_actions)
            render_solution_card("Recommended Treatments", "🧪", solution.recommended_treatments)
            render_solution_card("Long-Term Prevention", "🛡️", solution.long_term_prevention)

    if st.button("Start a New Analysis", key="new_analysis", use_container_width=True):
        start_over(session)


# === App UI ===
try:
    settings = get_settings()
except ConfigError as e:
    st.error(f"❌ {e}")
    st.stop()

gateway = get_gateway()
session = get_session()
speech = get_speech(settings, session)

# leaving the solution screen silences any read-aloud
if session.state is not AppState.SOLUTION and speech.is_speaking:
    speech.stop()

render_header()
render_error_banner(session)

if session.state is AppState.USER_INPUT:
    render_user_input(session)
elif session.state is AppState.DISEASE_SELECTION:
    render_disease_selection(session, gateway)
elif session.state is AppState.SOLUTION:
    render_solution(session, gateway, speech)

render_footer()
